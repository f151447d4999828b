from rest_framework import serializers

from .identity import format_phone_number
from .models import Booking, Room, Payment, UserProfile
from . import services


class RoomSerializer(serializers.ModelSerializer):

    class Meta:
        model = Room
        fields = '__all__'
        read_only_fields = ('next_available', 'created_by', 'created_at', 'updated_at')
        # Duplicate numbers are reported as a conflict by the view
        extra_kwargs = {'number': {'validators': []}}

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # Occupancy changes with the clock, so it is resolved on every read.
        states = self.context.get('room_states')
        state = states[instance.pk] if states else services.room_state(instance, self.context.get('now'))
        data['status'] = state.status
        data['next_available'] = state.next_available.isoformat() if state.next_available else None
        return data


class BookingSerializer(serializers.ModelSerializer):
    room_id = serializers.IntegerField()
    room_number = serializers.CharField(source='room.number', read_only=True, default=None)
    guest_phone = serializers.CharField(allow_blank=True, allow_null=True, required=False)
    payment_phone = serializers.CharField(allow_blank=True, allow_null=True, required=False)
    guests = serializers.IntegerField(min_value=1, required=False)
    status = serializers.ChoiceField(choices=Booking.Status.choices, required=False)

    class Meta:
        model = Booking
        exclude = ('room',)
        read_only_fields = (
            'user', 'total_price', 'payment_status', 'created_by', 'created_at', 'updated_at',
        )

    def validate(self, data):
        check_in = data.get('check_in')
        check_out = data.get('check_out')

        # For updates, fall back to the stored dates
        if self.instance:
            check_in = check_in or self.instance.check_in
            check_out = check_out or self.instance.check_out
        elif not check_in or not check_out:
            raise serializers.ValidationError("check_in and check_out are required")

        if check_out <= check_in:
            raise serializers.ValidationError("check_out must be after check_in")
        return data

    def create(self, validated):
        return services.create_booking(
            validated,
            created_by=self.context.get('uid', ''),
            owner_uid=self.context.get('owner_uid'),
        )

    def update(self, instance, validated_data):
        return services.update_booking(instance.pk, validated_data)


class PaymentSerializer(serializers.ModelSerializer):
    booking_id = serializers.IntegerField(read_only=True)
    guest = serializers.CharField(source='booking.guest_name', read_only=True, default=None)

    class Meta:
        model = Payment
        exclude = ('booking',)


class PaymentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Payment.Status.choices)


class PaymentInitiateSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    phone_number = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=1)


class PaymentWebhookSerializer(serializers.Serializer):
    status = serializers.CharField()
    customer_reference = serializers.CharField()
    provider_transaction_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    message = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class UserProfileSerializer(serializers.ModelSerializer):
    role = serializers.CharField(required=False)

    class Meta:
        model = UserProfile
        fields = ('id', 'uid', 'name', 'email', 'phone_number', 'role', 'created_at')
        read_only_fields = ('id', 'created_at')
        # Uniqueness is checked on the normalised values below
        extra_kwargs = {
            'uid': {'required': False, 'validators': []},
            'phone_number': {'validators': []},
        }

    def validate_uid(self, value):
        if UserProfile.objects.filter(uid=value).exists():
            raise serializers.ValidationError("A profile with this uid already exists.")
        return value

    def validate_role(self, value):
        # Unknown roles fall back to customer
        return value if value in UserProfile.Role.values else UserProfile.Role.CUSTOMER

    def validate_phone_number(self, value):
        phone = format_phone_number(value)
        others = UserProfile.objects.filter(phone_number=phone)
        if self.instance is not None:
            others = others.exclude(pk=self.instance.pk)
        if phone and others.exists():
            raise serializers.ValidationError("Phone number already in use.")
        return phone


class RoleSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=UserProfile.Role.choices)
