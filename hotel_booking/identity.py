import logging
import re
import uuid

from django.db import IntegrityError, transaction

from .conf import booking_settings
from .models import UserProfile

logger = logging.getLogger(__name__)

_PHONE_NOISE = re.compile(r"[\s\-()]")


def format_phone_number(phone, country_code=None):
    """Normalize a phone number to ``+<countrycode><subscriber>``."""
    if not phone:
        return None
    country_code = country_code or booking_settings()["DEFAULT_COUNTRY_CODE"]
    clean = _PHONE_NOISE.sub("", str(phone))
    if not clean:
        return None
    if clean.startswith("0"):
        return f"+{country_code}{clean[1:]}"
    if not clean.startswith("+"):
        return f"+{country_code}{clean}"
    return clean


def find_or_create_profile(name, phone=None, email=None):
    """
    Resolve the guest identity for a booking.

    Phone match wins over email match; a new customer profile is created only
    when neither matches. Losing a creation race on the phone number is not an
    error: the profile that won is returned instead.
    """
    phone = format_phone_number(phone)

    if phone:
        profile = UserProfile.objects.filter(phone_number=phone).first()
        if profile:
            return profile
    if email:
        profile = UserProfile.objects.filter(email__iexact=email).first()
        if profile:
            return profile

    try:
        with transaction.atomic():
            profile = UserProfile.objects.create(
                uid=uuid.uuid4().hex,
                name=name or "",
                email=email or None,
                phone_number=phone,
                role=UserProfile.Role.CUSTOMER,
            )
    except IntegrityError:
        if not phone:
            raise
        logger.info("Guest profile for %s created concurrently, reusing it", phone)
        return UserProfile.objects.get(phone_number=phone)

    logger.info("Created guest profile %s", profile.uid)
    return profile


def profile_for_caller(uid, name="", phone=None, email=None, role=UserProfile.Role.CUSTOMER):
    """
    Return the signed-in caller's own profile, creating it on first use.

    Blank name, email and phone are filled in from the supplied details. The
    phone is only claimed when no other profile holds it.
    """
    phone = format_phone_number(phone)
    profile, created = UserProfile.objects.get_or_create(
        uid=uid, defaults={"name": name or "", "email": email or None, "role": role},
    )
    if created:
        logger.info("Created profile for caller %s", uid)

    changed = []
    if name and not profile.name:
        profile.name = name
        changed.append("name")
    if email and not profile.email:
        profile.email = email
        changed.append("email")
    if phone and not profile.phone_number and not UserProfile.objects.filter(phone_number=phone).exists():
        profile.phone_number = phone
        changed.append("phone_number")
    if not changed:
        return profile

    try:
        with transaction.atomic():
            profile.save(update_fields=changed)
    except IntegrityError:
        # The phone number was claimed concurrently; keep the rest.
        logger.info("Phone %s claimed concurrently, not linking it to %s", phone, uid)
        changed.remove("phone_number")
        profile.phone_number = None
        if changed:
            profile.save(update_fields=changed)
    return profile

