import logging
import uuid
from datetime import datetime

from django.http import JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime, parse_date
from rest_framework import viewsets, status, exceptions
from rest_framework.decorators import action, api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from .availability import natural_sort_key
from .exceptions import DuplicateRoomNumber
from .models import Room, Booking, Payment, UserProfile
from .permissions import IsAdmin, IsManagerOrAdmin, IsStaff, has_rank, is_staff_identity
from .serializers import (
    RoomSerializer,
    BookingSerializer,
    PaymentSerializer,
    PaymentStatusSerializer,
    PaymentInitiateSerializer,
    RoleSerializer,
    UserProfileSerializer,
)
from . import identity, payments, services

logger = logging.getLogger(__name__)


def welcome(request):
    return JsonResponse({"message": "Welcome to the Hotel Booking System"})


def health_check(request):
    return JsonResponse({"status": "ok"})


def parse_instant(value, field):
    """Accept an ISO datetime or a bare date (midnight in the current timezone)."""
    parsed = parse_datetime(value) if value else None
    if parsed is None and value:
        day = parse_date(value)
        parsed = datetime.combine(day, datetime.min.time()) if day else None
    if parsed is None:
        raise exceptions.ValidationError({field: ["Invalid date format. Use ISO 8601."]})
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


class RoomViewSet(viewsets.ModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer
    lookup_value_regex = r'\d+'

    def get_permissions(self):
        if self.action in ('list', 'retrieve'):
            return [AllowAny()]
        if self.action in ('create', 'destroy'):
            return [IsManagerOrAdmin()]
        return [IsStaff()]

    def list(self, request):
        """List rooms with their current status, optionally only those free for a stay"""
        check_in_str = request.query_params.get('check_in')
        check_out_str = request.query_params.get('check_out')

        if check_in_str and check_out_str:
            check_in = parse_instant(check_in_str, 'check_in')
            check_out = parse_instant(check_out_str, 'check_out')
            if check_out <= check_in:
                raise exceptions.ValidationError("check_out must be after check_in")
            rooms = services.available_rooms(check_in, check_out)
        else:
            rooms = Room.objects.all()

        room_type = request.query_params.get('type')
        if room_type:
            rooms = rooms.filter(room_type=room_type)

        rooms = list(rooms)
        now = timezone.now()
        states = services.room_states(rooms, now)

        filter_status = request.query_params.get('status')
        if filter_status:
            rooms = [r for r in rooms if states[r.pk].status == filter_status]
        rooms.sort(key=lambda r: natural_sort_key(r.number))

        serializer = self.get_serializer(rooms, many=True, context={
            **self.get_serializer_context(), 'room_states': states, 'now': now,
        })
        return Response({'success': True, 'count': len(rooms), 'data': serializer.data})

    def _check_unique_number(self, number, instance=None):
        qs = Room.objects.filter(number=number)
        if instance is not None:
            qs = qs.exclude(pk=instance.pk)
        if number and qs.exists():
            raise DuplicateRoomNumber(f"Room {number} already exists.")

    def perform_create(self, serializer):
        self._check_unique_number(serializer.validated_data.get('number'))
        serializer.save(created_by=self.request.user.uid)

    def update(self, request, *args, **kwargs):
        kwargs['partial'] = True
        return super().update(request, *args, **kwargs)

    def perform_update(self, serializer):
        room = serializer.instance
        self._check_unique_number(serializer.validated_data.get('number'), room)
        new_status = serializer.validated_data.get('status')
        if new_status in (Room.Status.AVAILABLE, Room.Status.MAINTENANCE):
            services.end_current_stays(room)
        serializer.save()

    def perform_destroy(self, instance):
        logger.info("Room %s deleted by %s", instance.number, self.request.user.uid)
        instance.delete()


class BookingViewSet(viewsets.ModelViewSet):
    queryset = Booking.objects.select_related('room', 'user').all()
    serializer_class = BookingSerializer
    lookup_value_regex = r'\d+'
    http_method_names = ['get', 'post', 'put', 'patch', 'head', 'options']

    def get_permissions(self):
        if self.action == 'list':
            return [IsStaff()]
        return [IsAuthenticated()]

    def get_serializer_context(self):
        context = super().get_serializer_context()
        if self.request.user:
            context['uid'] = self.request.user.uid
            if not is_staff_identity(self.request.user):
                context['owner_uid'] = self.request.user.uid
        return context

    def get_object(self):
        booking = super().get_object()
        if booking.user is None or booking.user.uid != self.request.user.uid:
            if not is_staff_identity(self.request.user):
                raise exceptions.PermissionDenied("Unauthorized")
        return booking

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = serializer.save()
        return Response(
            {'success': True, 'id': booking.pk, 'data': self.get_serializer(booking).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=['get'])
    def me(self, request):
        """Bookings for the signed-in guest"""
        bookings = self.get_queryset().filter(user__uid=request.user.uid)
        serializer = self.get_serializer(bookings, many=True)
        return Response({'success': True, 'bookings': serializer.data})

    def update(self, request, pk=None, **kwargs):
        """Update a booking - staff only, guests may only cancel"""
        booking = self.get_object()
        if not is_staff_identity(request.user):
            raise exceptions.PermissionDenied('Only cancellation is allowed for guests')

        serializer = self.get_serializer(booking, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        booking = serializer.save()
        return Response({'success': True, 'data': self.get_serializer(booking).data})

    def partial_update(self, request, pk=None, **kwargs):
        """Handle partial updates (PATCH requests)"""
        return self.update(request, pk, **kwargs)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        booking = services.cancel_booking(self.get_object().pk)
        return Response({'success': True, 'data': self.get_serializer(booking).data})


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Payment.objects.select_related('booking', 'user').all()
    serializer_class = PaymentSerializer
    lookup_value_regex = r'\d+'

    def get_permissions(self):
        if self.action in ('list', 'update', 'partial_update'):
            return [IsStaff()]
        return [IsAuthenticated()]

    def get_object(self):
        payment = super().get_object()
        if payment.user is None or payment.user.uid != self.request.user.uid:
            if not is_staff_identity(self.request.user):
                raise exceptions.PermissionDenied("Unauthorized")
        return payment

    def list(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_queryset()[:100], many=True)
        return Response({'success': True, 'payments': serializer.data})

    @action(detail=False, methods=['get'])
    def me(self, request):
        payments_qs = self.get_queryset().filter(user__uid=request.user.uid)[:50]
        serializer = self.get_serializer(payments_qs, many=True)
        return Response({'success': True, 'payments': serializer.data})

    def update(self, request, pk=None, **kwargs):
        """Staff status update; cascades to the booking"""
        serializer = PaymentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = payments.apply_status(pk, serializer.validated_data['status'])
        return Response({'success': True, 'message': 'Updated', 'data': self.get_serializer(payment).data})

    def partial_update(self, request, pk=None, **kwargs):
        return self.update(request, pk, **kwargs)

    @action(detail=False, methods=['post'])
    def initiate(self, request):
        """Start a mobile-money payment for a booking"""
        serializer = PaymentInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        booking = Booking.objects.select_related('user').filter(pk=data['booking_id']).first()
        if booking is None:
            raise exceptions.NotFound('Booking not found.')
        if (booking.user is None or booking.user.uid != request.user.uid) and not is_staff_identity(request.user):
            raise exceptions.PermissionDenied('Unauthorized')

        payment = payments.initiate_payment(booking, data['phone_number'], data['amount'])
        return Response({
            'success': True,
            'message': 'Payment prompt sent',
            'data': self.get_serializer(payment).data,
        })

    @action(detail=True, methods=['post'])
    def retry(self, request, pk=None):
        payment = payments.retry_payment(self.get_object())
        return Response({
            'success': True,
            'message': 'Payment prompt sent',
            'data': self.get_serializer(payment).data,
        })


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def payment_webhook(request):
    """Provider callback, acknowledged even for references we do not know"""
    payments.handle_webhook(request.data)
    return Response('OK', status=status.HTTP_200_OK)


class UserProfileViewSet(viewsets.ModelViewSet):
    queryset = UserProfile.objects.all()
    serializer_class = UserProfileSerializer
    lookup_field = 'uid'

    def get_permissions(self):
        if self.action == 'list':
            return [IsStaff()]
        if self.action == 'create':
            return [IsManagerOrAdmin()]
        if self.action in ('destroy', 'role'):
            return [IsAdmin()]
        return [IsAuthenticated()]

    def _check_self_or(self, uid, minimum):
        if uid != self.request.user.uid and not has_rank(self.request.user, minimum):
            raise exceptions.PermissionDenied('Unauthorized')

    def list(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_queryset().order_by('created_at'), many=True)
        return Response({'success': True, 'count': len(serializer.data), 'users': serializer.data})

    def retrieve(self, request, uid=None):
        """Own profile, or any profile for managers and admins"""
        self._check_self_or(uid, UserProfile.Role.MANAGER)
        return Response({'success': True, 'user': self.get_serializer(self.get_object()).data})

    @action(detail=False, methods=['get'])
    def me(self, request):
        profile = identity.profile_for_caller(request.user.uid, role=request.user.role)
        return Response({'success': True, 'user': self.get_serializer(profile).data})

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = serializer.save(uid=serializer.validated_data.get('uid') or uuid.uuid4().hex)
        logger.info("Profile %s created as %s by %s", profile.uid, profile.role, request.user.uid)
        return Response(
            {
                'success': True,
                'message': f'User created successfully as {profile.role}',
                'user': self.get_serializer(profile).data,
            },
            status=status.HTTP_201_CREATED,
        )

    def update(self, request, uid=None, **kwargs):
        """Update name or phone number - own profile, or any profile for admins"""
        self._check_self_or(uid, UserProfile.Role.ADMIN)
        profile = self.get_object()

        changes = {field: request.data[field] for field in ('name', 'phone_number') if request.data.get(field)}
        if not changes:
            raise exceptions.ValidationError('No valid fields to update')

        serializer = self.get_serializer(profile, data=changes, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response({'success': True, 'message': 'User profile updated successfully', 'data': serializer.data})

    def partial_update(self, request, uid=None, **kwargs):
        return self.update(request, uid, **kwargs)

    @action(detail=True, methods=['patch'])
    def role(self, request, uid=None):
        serializer = RoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        if uid == request.user.uid:
            raise exceptions.PermissionDenied('You cannot change your own role.')

        profile = self.get_object()
        profile.role = serializer.validated_data['role']
        profile.save(update_fields=['role'])
        logger.info("Role of %s set to %s by %s", profile.uid, profile.role, request.user.uid)
        return Response({
            'success': True,
            'message': f'User {profile.uid} is now a {profile.role}',
            'data': {'uid': profile.uid, 'role': profile.role},
        })

    def destroy(self, request, uid=None):
        if uid == request.user.uid:
            raise exceptions.PermissionDenied('You cannot delete your own account.')
        profile = self.get_object()
        profile.delete()
        logger.info("Profile %s deleted by %s", uid, request.user.uid)
        return Response({'success': True, 'message': 'User deleted successfully', 'data': {'uid': uid}})
