"""
Django settings for hotel_booking_backend.

Values that differ between environments are read from environment variables.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "hotel-booking-dev-key-replace-before-deployment")

DEBUG = os.environ.get("DJANGO_DEBUG", "1") == "1"

ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "rest_framework",
    "hotel_booking",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "hotel_booking_backend.urls"
WSGI_APPLICATION = "hotel_booking_backend.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DATABASE_PATH", BASE_DIR / "db.sqlite3"),
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "hotel_booking.authentication.BearerTokenAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "EXCEPTION_HANDLER": "hotel_booking.exceptions.exception_handler",
    "UNAUTHENTICATED_USER": None,
}

HOTEL_BOOKING = {
    "OCCUPANCY_BUFFER_MINUTES": int(os.environ.get("HOTEL_BOOKING_OCCUPANCY_BUFFER_MINUTES", "60")),
    "DEFAULT_COUNTRY_CODE": "256",
    "CURRENCY": "UGX",
    "MANUAL_PAYMENT_METHODS": ["Cash", "Merchant Pay"],
    "GATEWAY": {
        "BASE_URL": os.environ.get("RELWORX_BASE_URL", "https://payments.relworx.com/api"),
        "API_KEY": os.environ.get("RELWORX_API_KEY", ""),
        "ACCOUNT_NO": os.environ.get("RELWORX_ACCOUNT_NO", ""),
        "TIMEOUT": 10.0,
    },
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "hotel_booking": {
            "handlers": ["console"],
            "level": os.environ.get("HOTEL_BOOKING_LOG_LEVEL", "INFO"),
        },
    },
}
