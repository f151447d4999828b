"""
Booking lifecycle: create, update and cancel bookings without ever letting
two active bookings of one room overlap.

The overlap check runs twice for every write: once up front so a conflict is
reported before anything is written, and again inside the transaction that
holds the room row lock, which is what actually closes the check-then-act
window between concurrent requests.
"""

import logging
import secrets
import time
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import Exists, OuterRef
from django.utils import timezone
from rest_framework import exceptions

from .availability import ACTIVE_BOOKING_STATUSES, overlaps, resolve_status
from .conf import booking_settings, occupancy_buffer
from .exceptions import ConcurrencyConflict, RoomUnavailable
from .identity import find_or_create_profile, format_phone_number, profile_for_caller
from .models import Booking, Payment, Room

logger = logging.getLogger(__name__)

ONE_NIGHT = timedelta(days=1)
WRITE_ATTEMPTS = 2

# Fields copied verbatim from an update request onto the booking.
PLAIN_UPDATE_FIELDS = (
    "guest_name", "guest_email", "guests", "status", "payment_method",
    "received_by", "transaction_id", "provider_detail",
)


def generate_reference():
    """Customer reference handed to the payment provider: ``TX-<epoch ms>-<random>``."""
    return f"TX-{int(time.time() * 1000)}-{secrets.randbelow(1_000_000_000):09d}"


def compute_total_price(price, check_in, check_out):
    """Price for the stay; partial days round up and the minimum is one night."""
    nights, remainder = divmod(check_out - check_in, ONE_NIGHT)
    if remainder:
        nights += 1
    return Decimal(price) * max(1, nights)


def is_manual_method(payment_method):
    manual = {m.lower() for m in booking_settings()["MANUAL_PAYMENT_METHODS"]}
    return (payment_method or "").strip().lower() in manual


def initial_statuses(payment_method, transaction_id=None):
    """Staff-verified payments confirm the booking immediately, everything else waits for the provider."""
    if transaction_id or is_manual_method(payment_method):
        return Booking.Status.CONFIRMED, Booking.PaymentStatus.PAID
    return Booking.Status.PENDING, Booking.PaymentStatus.UNPAID


def validate_interval(check_in, check_out):
    if not check_in or not check_out:
        raise exceptions.ValidationError({"check_in": ["check_in and check_out are required"]})
    if check_out <= check_in:
        raise exceptions.ValidationError({"check_out": ["check_out must be after check_in"]})


def active_intervals(room_id, exclude_id=None):
    qs = Booking.objects.filter(room_id=room_id, status__in=ACTIVE_BOOKING_STATUSES)
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    return list(qs.values_list("check_in", "check_out"))


def is_room_free(room_id, check_in, check_out, exclude_id=None):
    return not overlaps(check_in, check_out, active_intervals(room_id, exclude_id))


def ensure_room_free(room_id, check_in, check_out, exclude_id=None):
    if not is_room_free(room_id, check_in, check_out, exclude_id):
        raise RoomUnavailable()


def _locked_room(room_id):
    try:
        return Room.objects.select_for_update().get(pk=room_id)
    except Room.DoesNotExist:
        raise exceptions.NotFound("Room not found.")


def _locked_booking(booking_id):
    try:
        return Booking.objects.select_for_update().get(pk=booking_id)
    except Booking.DoesNotExist:
        raise exceptions.NotFound("Booking not found.")


def create_booking(data, created_by="", owner_uid=None):
    """
    Create a booking and its primary payment record.

    ``data`` holds ``room_id``, ``check_in``, ``check_out``, ``guest_name`` and
    optionally guest contact details, ``guests`` and payment fields. Raises
    ``RoomUnavailable`` when the room is taken for any part of the stay.

    ``owner_uid`` is set when guests book for themselves: the booking then
    belongs to their own profile. Otherwise the guest is resolved from the
    contact details.
    """
    check_in, check_out = data.get("check_in"), data.get("check_out")
    validate_interval(check_in, check_out)
    if not data.get("guest_name"):
        raise exceptions.ValidationError({"guest_name": ["This field is required."]})

    room_id = data.get("room_id")
    if room_id is None or not Room.objects.filter(pk=room_id).exists():
        raise exceptions.NotFound("Room not found.")

    ensure_room_free(room_id, check_in, check_out)

    # Left in place if the booking write below fails; a retry finds it again.
    if owner_uid:
        profile = profile_for_caller(owner_uid, data["guest_name"], data.get("guest_phone"), data.get("guest_email"))
    else:
        profile = find_or_create_profile(data["guest_name"], data.get("guest_phone"), data.get("guest_email"))

    for attempt in range(1, WRITE_ATTEMPTS + 1):
        try:
            booking = _commit_booking(room_id, profile, data, created_by)
        except ConcurrencyConflict:
            logger.warning("Room %s was booked concurrently (attempt %d)", room_id, attempt)
            continue
        logger.info(
            "Booking created: %s, room=%s, status=%s, total=%s",
            booking.pk, room_id, booking.status, booking.total_price,
        )
        return booking
    raise RoomUnavailable()


@transaction.atomic
def _commit_booking(room_id, profile, data, created_by):
    room = _locked_room(room_id)
    check_in, check_out = data["check_in"], data["check_out"]
    if not is_room_free(room.pk, check_in, check_out):
        raise ConcurrencyConflict()

    method = data.get("payment_method") or ""
    transaction_id = data.get("transaction_id") or None
    status, payment_status = initial_statuses(method, transaction_id)
    total = compute_total_price(room.price, check_in, check_out)
    payment_phone = None if is_manual_method(method) else format_phone_number(data.get("payment_phone"))

    booking = Booking.objects.create(
        room=room,
        user=profile,
        guest_name=data["guest_name"],
        guest_phone=format_phone_number(data.get("guest_phone")),
        guest_email=data.get("guest_email") or None,
        check_in=check_in,
        check_out=check_out,
        guests=data.get("guests") or 1,
        total_price=total,
        status=status,
        payment_status=payment_status,
        payment_method=method,
        payment_phone=payment_phone,
        received_by=data.get("received_by") or None,
        transaction_id=transaction_id,
        provider_detail=data.get("provider_detail") or None,
        created_by=created_by,
    )
    Payment.objects.create(
        booking=booking,
        user=profile,
        amount=total,
        currency=booking_settings()["CURRENCY"],
        provider=method,
        provider_detail=booking.provider_detail,
        phone=payment_phone,
        status=Payment.Status.PAID if payment_status == Booking.PaymentStatus.PAID else Payment.Status.PENDING,
        transaction_id=transaction_id,
        customer_reference=generate_reference(),
        paid_at=timezone.now() if payment_status == Booking.PaymentStatus.PAID else None,
    )
    return booking


def update_booking(booking_id, changes):
    """
    Apply ``changes`` to a booking.

    A new room, new dates or reactivating a cancelled booking re-runs the
    overlap check with the booking itself excluded.
    """
    if changes.get("status") == Booking.Status.CANCELLED:
        return cancel_booking(booking_id)

    with transaction.atomic():
        booking = _locked_booking(booking_id)
        room_id = changes.get("room_id", booking.room_id)
        check_in = changes.get("check_in", booking.check_in)
        check_out = changes.get("check_out", booking.check_out)
        validate_interval(check_in, check_out)

        new_status = changes.get("status", booking.status)
        moved = room_id != booking.room_id or check_in != booking.check_in or check_out != booking.check_out
        reactivated = booking.status == Booking.Status.CANCELLED and new_status in ACTIVE_BOOKING_STATUSES

        if moved or reactivated:
            if room_id is None:
                raise exceptions.ValidationError({"room_id": ["Booking has no room."]})
            room = _locked_room(room_id)
            if new_status in ACTIVE_BOOKING_STATUSES:
                ensure_room_free(room.pk, check_in, check_out, exclude_id=booking.pk)
            booking.room = room
            booking.check_in, booking.check_out = check_in, check_out
            booking.total_price = compute_total_price(room.price, check_in, check_out)
            booking.payments.filter(status=Payment.Status.PENDING).update(amount=booking.total_price)

        for field in PLAIN_UPDATE_FIELDS:
            if field in changes:
                setattr(booking, field, changes[field])
        if "guest_phone" in changes:
            booking.guest_phone = format_phone_number(changes["guest_phone"])
        if "payment_phone" in changes:
            booking.payment_phone = format_phone_number(changes["payment_phone"])
        booking.save()

    logger.info("Booking updated: %s", booking.pk)
    return booking


def cancel_booking(booking_id):
    """Soft-cancel a booking. Cancelling twice is a no-op."""
    with transaction.atomic():
        booking = _locked_booking(booking_id)
        if booking.status == Booking.Status.CANCELLED:
            return booking
        booking.status = Booking.Status.CANCELLED
        booking.save(update_fields=["status", "updated_at"])
    logger.info("Booking cancelled: %s", booking.pk)
    return booking


def available_rooms(check_in, check_out):
    """Rooms that can take a new booking for ``[check_in, check_out)``."""
    overlap = Exists(
        Booking.objects.filter(
            room=OuterRef("pk"),
            status__in=ACTIVE_BOOKING_STATUSES,
            check_in__lt=check_out,
            check_out__gt=check_in,
        )
    )
    return Room.objects.annotate(has_overlap=overlap).filter(has_overlap=False).exclude(
        status=Room.Status.MAINTENANCE
    )


def room_states(rooms, now=None):
    """Map room id to its current ``RoomState``, using one query for all rooms."""
    now = now or timezone.now()
    buffer = occupancy_buffer()
    by_room = defaultdict(list)
    bookings = Booking.objects.filter(
        room__in=[r.pk for r in rooms],
        status__in=ACTIVE_BOOKING_STATUSES,
        check_out__gt=now,
    )
    for booking in bookings:
        by_room[booking.room_id].append(booking)
    return {r.pk: resolve_status(r.status, by_room[r.pk], now, buffer) for r in rooms}


def room_state(room, now=None):
    return room_states([room], now)[room.pk]


def end_current_stays(room, now=None):
    """
    Cut short the stays occupying ``room`` right now.

    Used when staff mark a room Available or Maintenance by hand. Stays
    already running end at ``now``. Stays whose early-arrival window has
    opened but which have not started yet shrink to the empty stay
    ``[now, now)``.
    """
    now = now or timezone.now()
    current = Booking.objects.filter(room=room, status__in=ACTIVE_BOOKING_STATUSES, check_out__gt=now)
    ended = current.filter(check_in__lte=now).update(check_out=now, updated_at=now)
    ended += current.filter(check_in__gt=now, check_in__lte=now + occupancy_buffer()).update(
        check_in=now, check_out=now, updated_at=now,
    )
    if ended:
        logger.info("Ended %d running stay(s) in room %s", ended, room.number)
    return ended
