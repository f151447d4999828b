"""
Room availability rules.

Bookings occupy half-open intervals ``[check_in, check_out)``: a stay that
ends at ``T`` never conflicts with one that starts at ``T``. Everything here
is pure; callers pass ``now`` and the bookings they fetched.
"""

import re
from collections import namedtuple
from datetime import timedelta

from .models import Booking, Room

ACTIVE_BOOKING_STATUSES = (
    Booking.Status.CONFIRMED,
    Booking.Status.PENDING,
    Booking.Status.CHECKED_IN,
)

DEFAULT_OCCUPANCY_BUFFER = timedelta(hours=1)

RoomState = namedtuple("RoomState", ["status", "next_available"])


def overlaps(start, end, intervals):
    """Return True if ``[start, end)`` conflicts with any ``(start, end)`` pair in ``intervals``."""
    return any(start < other_end and other_start < end for other_start, other_end in intervals)


def is_active_now(start, end, now, buffer=DEFAULT_OCCUPANCY_BUFFER):
    # Guests may arrive up to ``buffer`` before the nominal check-in.
    return start - buffer <= now < end


def is_active_booking(booking):
    return booking.status in ACTIVE_BOOKING_STATUSES


def resolve_status(stored_status, bookings, now, buffer=DEFAULT_OCCUPANCY_BUFFER):
    """
    Derive a room's effective status from its stored status and its bookings.

    Maintenance always wins. Otherwise the room is Occupied while any active
    booking covers ``now`` (with the early-arrival buffer), and becomes free at
    the earliest check-out among those bookings. Stored Occupied/Booked flags
    are treated as stale and recomputed.
    """
    if stored_status == Room.Status.MAINTENANCE:
        return RoomState(Room.Status.MAINTENANCE, None)

    current = [
        b for b in bookings
        if is_active_booking(b) and is_active_now(b.check_in, b.check_out, now, buffer)
    ]
    if current:
        binding = min(current, key=lambda b: b.check_out)
        return RoomState(Room.Status.OCCUPIED, binding.check_out)
    return RoomState(Room.Status.AVAILABLE, None)


def natural_sort_key(value):
    """Sort key that orders room numbers like "9" < "10" < "101" < "A2"."""
    parts = re.split(r"(\d+)", str(value or ""))
    return [(0, int(p), "") if p.isdigit() else (1, 0, p.lower()) for p in parts if p]
