from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from django.db import IntegrityError
from django.test import TestCase
from rest_framework import exceptions

from hotel_booking import services
from hotel_booking.exceptions import ConcurrencyConflict, RoomUnavailable
from hotel_booking.identity import find_or_create_profile, format_phone_number, profile_for_caller
from hotel_booking.models import Booking, Payment, Room, UserProfile

T0 = datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)


def booking_data(room, start, end, **extra):
    data = {
        'room_id': room.pk,
        'guest_name': 'Test Guest',
        'guest_phone': '0772 123-456',
        'check_in': start,
        'check_out': end,
        'payment_method': 'Mobile Money',
        'payment_phone': '0772123456',
    }
    data.update(extra)
    return data


class PriceTestCase(TestCase):

    def test_partial_days_round_up(self):
        self.assertEqual(
            services.compute_total_price(100, T0, datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)),
            Decimal('100'),
        )
        self.assertEqual(
            services.compute_total_price(100, T0, datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)),
            Decimal('200'),
        )

    def test_whole_days_are_exact(self):
        self.assertEqual(services.compute_total_price(100, T0, T0 + timedelta(days=3)), Decimal('300'))

    def test_short_stay_charges_one_night(self):
        self.assertEqual(services.compute_total_price(100, T0, T0 + timedelta(hours=3)), Decimal('100'))


class InitialStatusTestCase(TestCase):

    def test_manual_methods_confirm_immediately(self):
        for method in ('Cash', 'cash', 'Merchant Pay'):
            with self.subTest(method=method):
                self.assertEqual(
                    services.initial_statuses(method),
                    (Booking.Status.CONFIRMED, Booking.PaymentStatus.PAID),
                )

    def test_mobile_money_waits_for_provider(self):
        self.assertEqual(
            services.initial_statuses('Mobile Money'),
            (Booking.Status.PENDING, Booking.PaymentStatus.UNPAID),
        )

    def test_transaction_id_confirms(self):
        self.assertEqual(
            services.initial_statuses('Mobile Money', transaction_id='MP123'),
            (Booking.Status.CONFIRMED, Booking.PaymentStatus.PAID),
        )

    def test_references_are_unique(self):
        refs = {services.generate_reference() for _ in range(200)}
        self.assertEqual(len(refs), 200)
        self.assertTrue(all(ref.startswith('TX-') for ref in refs))


class CreateBookingTestCase(TestCase):

    def setUp(self):
        self.room = Room.objects.create(number="101", room_type="Standard", price=100)

    def test_creates_booking_with_primary_payment(self):
        booking = services.create_booking(
            booking_data(self.room, T0, T0 + timedelta(days=2)), created_by='staff-1'
        )

        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.UNPAID)
        self.assertEqual(booking.total_price, Decimal('200'))
        self.assertEqual(booking.guest_phone, '+256772123456')
        self.assertEqual(booking.created_by, 'staff-1')

        payment = booking.payments.get()
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertEqual(payment.amount, Decimal('200'))
        self.assertEqual(payment.phone, '+256772123456')
        self.assertTrue(payment.customer_reference.startswith('TX-'))

    def test_cash_booking_is_confirmed_and_paid(self):
        booking = services.create_booking(
            booking_data(self.room, T0, T0 + timedelta(days=1), payment_method='Cash', received_by='Front desk')
        )

        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.PAID)
        self.assertIsNone(booking.payment_phone)
        payment = booking.payments.get()
        self.assertEqual(payment.status, Payment.Status.PAID)
        self.assertIsNotNone(payment.paid_at)

    def test_overlap_is_rejected_without_writes(self):
        services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=4)))

        with self.assertRaises(RoomUnavailable):
            services.create_booking(booking_data(
                self.room, T0 + timedelta(days=1), T0 + timedelta(days=2),
                guest_name='Other Guest', guest_phone='0700000001',
            ))

        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(Payment.objects.count(), 1)
        self.assertFalse(UserProfile.objects.filter(phone_number='+256700000001').exists())

    def test_back_to_back_stays_are_allowed(self):
        first = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        second = services.create_booking(booking_data(self.room, T0 + timedelta(days=2), T0 + timedelta(days=3)))
        before = services.create_booking(booking_data(self.room, T0 - timedelta(days=1), T0))

        self.assertEqual(Booking.objects.filter(room=self.room).count(), 3)
        self.assertNotEqual(first.pk, second.pk)
        self.assertEqual(before.check_out, first.check_in)

    def test_cancelled_booking_does_not_block(self):
        booking = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        services.cancel_booking(booking.pk)

        replacement = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        self.assertEqual(replacement.status, Booking.Status.PENDING)

    def test_invalid_interval(self):
        with self.assertRaises(exceptions.ValidationError):
            services.create_booking(booking_data(self.room, T0, T0))
        with self.assertRaises(exceptions.ValidationError):
            services.create_booking(booking_data(self.room, T0, None))

    def test_unknown_room(self):
        data = booking_data(self.room, T0, T0 + timedelta(days=1))
        data['room_id'] = self.room.pk + 100
        with self.assertRaises(exceptions.NotFound):
            services.create_booking(data)

    def test_write_time_conflict_is_retried_once(self):
        real_commit = services._commit_booking
        calls = []

        def flaky_commit(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise ConcurrencyConflict()
            return real_commit(*args, **kwargs)

        with patch('hotel_booking.services._commit_booking', side_effect=flaky_commit):
            booking = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=1)))

        self.assertEqual(len(calls), 2)
        self.assertEqual(Booking.objects.get().pk, booking.pk)

    def test_race_lost_at_write_time_reports_unavailable(self):
        # A competing booking commits after the up-front check passed.
        services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))

        with patch('hotel_booking.services.ensure_room_free'):
            with self.assertRaises(RoomUnavailable):
                services.create_booking(booking_data(self.room, T0 + timedelta(days=1), T0 + timedelta(days=3)))

        self.assertEqual(Booking.objects.filter(room=self.room).count(), 1)
        self.assertEqual(Payment.objects.count(), 1)


class UpdateBookingTestCase(TestCase):
    """Booking changes re-run the overlap check excluding the booking itself"""

    def setUp(self):
        self.room1 = Room.objects.create(number="501", room_type="Standard", price=100)
        self.room2 = Room.objects.create(number="502", room_type="Deluxe", price=150)
        self.booking = services.create_booking(booking_data(self.room1, T0, T0 + timedelta(days=2)))

    def test_extending_own_stay_does_not_conflict_with_itself(self):
        updated = services.update_booking(self.booking.pk, {'check_out': T0 + timedelta(days=3)})

        self.assertEqual(updated.check_out, T0 + timedelta(days=3))
        self.assertEqual(updated.total_price, Decimal('300'))
        self.assertEqual(updated.payments.get().amount, Decimal('300'))

    def test_room_change_recalculates_total(self):
        updated = services.update_booking(self.booking.pk, {'room_id': self.room2.pk})

        self.assertEqual(updated.room_id, self.room2.pk)
        self.assertEqual(updated.total_price, Decimal('300'))

    def test_date_change_into_conflict(self):
        services.create_booking(booking_data(self.room1, T0 + timedelta(days=5), T0 + timedelta(days=8)))

        with self.assertRaises(RoomUnavailable):
            services.update_booking(self.booking.pk, {
                'check_in': T0 + timedelta(days=4),
                'check_out': T0 + timedelta(days=6),
            })

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.check_in, T0)

    def test_room_change_into_conflict(self):
        services.create_booking(booking_data(self.room2, T0 + timedelta(days=1), T0 + timedelta(days=4)))

        with self.assertRaises(RoomUnavailable):
            services.update_booking(self.booking.pk, {'room_id': self.room2.pk})

    def test_reactivating_cancelled_booking_checks_overlap(self):
        services.cancel_booking(self.booking.pk)
        services.create_booking(booking_data(self.room1, T0, T0 + timedelta(days=1)))

        with self.assertRaises(RoomUnavailable):
            services.update_booking(self.booking.pk, {'status': Booking.Status.CONFIRMED})

    def test_guest_details_are_normalised(self):
        updated = services.update_booking(self.booking.pk, {'guest_phone': '(0701) 999-888', 'guests': 3})

        self.assertEqual(updated.guest_phone, '+256701999888')
        self.assertEqual(updated.guests, 3)

    def test_status_cancelled_routes_to_cancel(self):
        updated = services.update_booking(self.booking.pk, {'status': Booking.Status.CANCELLED})
        self.assertEqual(updated.status, Booking.Status.CANCELLED)

    def test_unknown_booking(self):
        with self.assertRaises(exceptions.NotFound):
            services.update_booking(self.booking.pk + 100, {'guests': 2})


class CancelBookingTestCase(TestCase):

    def setUp(self):
        self.room = Room.objects.create(number="301", room_type="Suite", price=250)
        self.booking = services.create_booking(
            booking_data(self.room, T0, T0 + timedelta(days=1), payment_method='Cash')
        )

    def test_cancel_twice_is_a_no_op(self):
        first = services.cancel_booking(self.booking.pk)
        second = services.cancel_booking(self.booking.pk)

        self.assertEqual(first.status, Booking.Status.CANCELLED)
        self.assertEqual(second.status, Booking.Status.CANCELLED)
        self.assertEqual(second.updated_at, first.updated_at)

    def test_cancel_leaves_payment_untouched(self):
        services.cancel_booking(self.booking.pk)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PaymentStatus.PAID)
        self.assertEqual(self.booking.payments.get().status, Payment.Status.PAID)

    def test_room_deletion_keeps_bookings(self):
        self.room.delete()

        self.booking.refresh_from_db()
        self.assertIsNone(self.booking.room_id)


class RoomStateTestCase(TestCase):

    def setUp(self):
        self.room = Room.objects.create(number="201", room_type="Deluxe", price=150)

    def test_current_stay_marks_room_occupied(self):
        booking = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))

        state = services.room_state(self.room, now=T0 + timedelta(hours=3))
        self.assertEqual(state.status, Room.Status.OCCUPIED)
        self.assertEqual(state.next_available, booking.check_out)

        # Derived status is not written back.
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.AVAILABLE)

    def test_cancellation_frees_room_immediately(self):
        booking = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        services.cancel_booking(booking.pk)

        state = services.room_state(self.room, now=T0 + timedelta(hours=3))
        self.assertEqual(state.status, Room.Status.AVAILABLE)

    def test_maintenance_wins_over_booking(self):
        services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        self.room.status = Room.Status.MAINTENANCE
        self.room.save()

        state = services.room_state(self.room, now=T0 + timedelta(hours=3))
        self.assertEqual(state.status, Room.Status.MAINTENANCE)

    def test_available_rooms_for_picker(self):
        other = Room.objects.create(number="202", room_type="Deluxe", price=150)
        closed = Room.objects.create(number="203", room_type="Deluxe", price=150, status=Room.Status.MAINTENANCE)
        services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))

        free = set(services.available_rooms(T0 + timedelta(days=1), T0 + timedelta(days=3)))
        self.assertEqual(free, {other})
        self.assertNotIn(closed, free)

        free_after = set(services.available_rooms(T0 + timedelta(days=2), T0 + timedelta(days=3)))
        self.assertIn(self.room, free_after)

    def test_end_current_stays(self):
        booking = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        now = T0 + timedelta(hours=5)

        self.assertEqual(services.end_current_stays(self.room, now=now), 1)

        booking.refresh_from_db()
        self.assertEqual(booking.check_out, now)
        self.assertEqual(services.room_state(self.room, now=now).status, Room.Status.AVAILABLE)

    def test_end_current_stays_within_arrival_window(self):
        arriving = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=2)))
        later = services.create_booking(booking_data(self.room, T0 + timedelta(days=3), T0 + timedelta(days=4)))
        now = T0 - timedelta(minutes=30)
        self.assertEqual(services.room_state(self.room, now=now).status, Room.Status.OCCUPIED)

        self.assertEqual(services.end_current_stays(self.room, now=now), 1)

        arriving.refresh_from_db()
        later.refresh_from_db()
        self.assertEqual((arriving.check_in, arriving.check_out), (now, now))
        self.assertEqual(later.check_in, T0 + timedelta(days=3))
        self.assertEqual(services.room_state(self.room, now=now).status, Room.Status.AVAILABLE)


class IdentityTestCase(TestCase):

    def test_phone_formats(self):
        self.assertEqual(format_phone_number('0772 123 456'), '+256772123456')
        self.assertEqual(format_phone_number('772-123-456'), '+256772123456')
        self.assertEqual(format_phone_number('+254 (700) 123456'), '+254700123456')
        self.assertIsNone(format_phone_number(''))
        self.assertIsNone(format_phone_number(None))

    def test_phone_match_wins_over_email(self):
        by_phone = UserProfile.objects.create(uid='p1', name='Phone', phone_number='+256772000001')
        UserProfile.objects.create(uid='e1', name='Email', email='guest@example.com')

        profile = find_or_create_profile('Guest', '0772000001', 'guest@example.com')
        self.assertEqual(profile.pk, by_phone.pk)

    def test_email_match(self):
        by_email = UserProfile.objects.create(uid='e1', name='Email', email='guest@example.com')

        profile = find_or_create_profile('Guest', '0772000002', 'GUEST@example.com')
        self.assertEqual(profile.pk, by_email.pk)

    def test_creates_customer_profile(self):
        profile = find_or_create_profile('New Guest', '0772000003', 'new@example.com')

        self.assertEqual(profile.role, UserProfile.Role.CUSTOMER)
        self.assertEqual(profile.phone_number, '+256772000003')
        self.assertEqual(find_or_create_profile('New Guest', '0772000003').pk, profile.pk)

    def test_creation_race_falls_back_to_phone_lookup(self):
        winner = UserProfile.objects.create(uid='winner', name='Winner', phone_number='+256772000004')
        # The lookups miss, as they would for the request that lost the race.
        with patch.object(UserProfile.objects, 'filter', return_value=UserProfile.objects.none()):
            with patch.object(UserProfile.objects, 'create', side_effect=IntegrityError('duplicate phone')):
                profile = find_or_create_profile('Loser', '0772000004')

        self.assertEqual(profile.pk, winner.pk)


class CallerProfileTestCase(TestCase):
    """Guests booking for themselves own the booking"""

    def setUp(self):
        self.room = Room.objects.create(number="601", room_type="Standard", price=100)

    def test_first_booking_creates_caller_profile(self):
        booking = services.create_booking(
            booking_data(self.room, T0, T0 + timedelta(days=1)), created_by='cust-new', owner_uid='cust-new',
        )

        self.assertEqual(booking.user.uid, 'cust-new')
        self.assertEqual(booking.user.role, UserProfile.Role.CUSTOMER)
        self.assertEqual(booking.user.phone_number, '+256772123456')
        self.assertEqual(booking.payments.get().user, booking.user)

    def test_existing_caller_profile_is_reused(self):
        own = UserProfile.objects.create(uid='cust-1', name='Own Name')

        booking = services.create_booking(
            booking_data(self.room, T0, T0 + timedelta(days=1), guest_name='Friend'), owner_uid='cust-1',
        )

        self.assertEqual(booking.user.pk, own.pk)
        own.refresh_from_db()
        self.assertEqual(own.name, 'Own Name')
        self.assertEqual(own.phone_number, '+256772123456')

    def test_phone_held_by_another_profile_is_not_claimed(self):
        UserProfile.objects.create(uid='walk-in', name='Walk-in', phone_number='+256772123456')

        profile = profile_for_caller('cust-2', 'Guest', '0772123456', 'guest@example.com')

        self.assertEqual(profile.uid, 'cust-2')
        self.assertIsNone(profile.phone_number)
        self.assertEqual(profile.email, 'guest@example.com')

    def test_staff_booking_resolves_guest_by_contact(self):
        walk_in = UserProfile.objects.create(uid='walk-in', name='Walk-in', phone_number='+256772123456')

        booking = services.create_booking(booking_data(self.room, T0, T0 + timedelta(days=1)), created_by='desk-1')

        self.assertEqual(booking.user.pk, walk_in.pk)
        self.assertFalse(UserProfile.objects.filter(uid='desk-1').exists())
