from django.contrib import admin

from .models import Booking, Payment, Room, UserProfile


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ("number", "room_type", "price", "price_usd", "status")
    list_filter = ("status", "room_type")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "room", "guest_name", "check_in", "check_out", "status", "payment_status")
    list_filter = ("status", "payment_status")
    search_fields = ("guest_name", "guest_phone", "guest_email")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("customer_reference", "booking", "amount", "currency", "status")
    list_filter = ("status",)
    search_fields = ("customer_reference", "external_reference")


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("uid", "name", "phone_number", "email", "role")
    list_filter = ("role",)
