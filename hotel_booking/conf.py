from datetime import timedelta

from django.conf import settings

DEFAULTS = {
    "OCCUPANCY_BUFFER_MINUTES": 60,
    "DEFAULT_COUNTRY_CODE": "256",
    "CURRENCY": "UGX",
    "MANUAL_PAYMENT_METHODS": ["Cash", "Merchant Pay"],
    "TOKEN_VERIFIER": "hotel_booking.authentication.verify_signed_token",
    "GATEWAY": {
        "BASE_URL": "https://payments.relworx.com/api",
        "API_KEY": "",
        "ACCOUNT_NO": "",
        "TIMEOUT": 10.0,
    },
}


def booking_settings():
    """Return HOTEL_BOOKING settings merged over the defaults."""
    configured = getattr(settings, "HOTEL_BOOKING", {})
    merged = {**DEFAULTS, **configured}
    merged["GATEWAY"] = {**DEFAULTS["GATEWAY"], **configured.get("GATEWAY", {})}
    return merged


def occupancy_buffer():
    return timedelta(minutes=booking_settings()["OCCUPANCY_BUFFER_MINUTES"])
