import logging
from collections import namedtuple

from django.core import signing
from django.utils.module_loading import import_string
from rest_framework import authentication, exceptions

from .conf import booking_settings
from .models import UserProfile

logger = logging.getLogger(__name__)

TOKEN_SALT = "hotel_booking.identity"


class Identity(namedtuple("Identity", ["uid", "role"])):
    """The verified caller, as reported by the identity provider."""

    is_authenticated = True
    is_anonymous = False


def issue_signed_token(uid, role=UserProfile.Role.CUSTOMER):
    return signing.dumps({"uid": uid, "role": role}, salt=TOKEN_SALT)


def verify_signed_token(token):
    """Default verifier: a ``django.core.signing`` token carrying uid and role."""
    try:
        claims = signing.loads(token, salt=TOKEN_SALT)
    except signing.BadSignature:
        return None
    uid, role = claims.get("uid"), claims.get("role")
    if uid and not role:
        role = UserProfile.objects.filter(uid=uid).values_list("role", flat=True).first()
    return uid, role


class BearerTokenAuthentication(authentication.BaseAuthentication):
    """
    ``Authorization: Bearer <token>`` authentication.

    The token is handed to the configured verifier, which returns
    ``(uid, role)`` or None. Verification itself belongs to the identity
    provider; the role it reports is trusted as-is.
    """

    keyword = "Bearer"

    def authenticate(self, request):
        auth = authentication.get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None
        if len(auth) != 2:
            raise exceptions.AuthenticationFailed("Invalid token header.")

        verifier = import_string(booking_settings()["TOKEN_VERIFIER"])
        claims = verifier(auth[1].decode())
        if not claims or not claims[0]:
            logger.info("Token verification failed")
            raise exceptions.AuthenticationFailed("Invalid token.")

        uid, role = claims
        if role not in UserProfile.Role.values:
            role = UserProfile.Role.CUSTOMER
        return Identity(uid, role), auth[1]

    def authenticate_header(self, request):
        return self.keyword
