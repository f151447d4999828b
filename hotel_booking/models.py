from django.db import models
from django.core.validators import MinValueValidator


class UserProfile(models.Model):
    class Role(models.TextChoices):
        ADMIN = "admin"
        MANAGER = "manager"
        RECEPTIONIST = "receptionist"
        CUSTOMER = "customer"

    uid = models.CharField(max_length=128, unique=True)
    name = models.CharField(max_length=150, blank=True)
    email = models.EmailField(null=True, blank=True)
    phone_number = models.CharField(max_length=20, unique=True, null=True, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.CUSTOMER)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name or self.uid} ({self.role})"


class Room(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = "Available"
        OCCUPIED = "Occupied"
        BOOKED = "Booked"
        MAINTENANCE = "Maintenance"

    number = models.CharField(max_length=20, unique=True)
    room_type = models.CharField(max_length=50)
    price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    price_usd = models.DecimalField(max_digits=10, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    capacity = models.PositiveIntegerField(default=1)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.AVAILABLE)
    next_available = models.DateTimeField(null=True, blank=True)
    amenities = models.JSONField(default=list, blank=True)
    description = models.TextField(blank=True)
    created_by = models.CharField(max_length=128, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Room {self.number}"


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        CHECKED_IN = "checked-in"
        CANCELLED = "cancelled"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid"
        PAID = "paid"
        FAILED = "failed"

    # Rooms can be deleted without touching their bookings.
    room = models.ForeignKey(Room, on_delete=models.SET_NULL, null=True, related_name="bookings")
    user = models.ForeignKey(UserProfile, on_delete=models.SET_NULL, null=True, related_name="bookings")
    guest_name = models.CharField(max_length=150)
    guest_phone = models.CharField(max_length=20, null=True, blank=True)
    guest_email = models.EmailField(null=True, blank=True)
    check_in = models.DateTimeField()
    check_out = models.DateTimeField()  # exclusive
    guests = models.PositiveIntegerField(default=1)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    payment_method = models.CharField(max_length=50, blank=True)
    payment_phone = models.CharField(max_length=20, null=True, blank=True)
    received_by = models.CharField(max_length=150, null=True, blank=True)
    transaction_id = models.CharField(max_length=100, null=True, blank=True)
    provider_detail = models.CharField(max_length=100, null=True, blank=True)
    created_by = models.CharField(max_length=128, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["room", "status"], name="idx_booking_room_status"),
        ]

    def __str__(self):
        return f"Booking {self.pk} ({self.status})"


class Payment(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        SUCCESS = "success"
        PAID = "paid"
        FAILED = "failed"

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payments")
    user = models.ForeignKey(UserProfile, on_delete=models.SET_NULL, null=True, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="UGX")
    provider = models.CharField(max_length=50, blank=True)
    provider_detail = models.CharField(max_length=100, null=True, blank=True)
    phone = models.CharField(max_length=20, null=True, blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    transaction_id = models.CharField(max_length=100, null=True, blank=True)
    external_reference = models.CharField(max_length=100, null=True, blank=True)
    customer_reference = models.CharField(max_length=64, unique=True)
    failure_reason = models.CharField(max_length=255, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    @property
    def is_settled(self):
        return self.status in (self.Status.SUCCESS, self.Status.PAID)

    def __str__(self):
        return f"{self.customer_reference} - {self.status}"
