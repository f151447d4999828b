"""
Payment status synchronisation.

Every payment transition, whether a staff update or a provider webhook,
goes through ``apply_status`` so the booking cascade and the rule that a
settled payment never goes back to pending or failed hold in one place.
"""

import logging

from django.db import transaction
from django.utils import timezone
from rest_framework import exceptions

from .conf import booking_settings
from .exceptions import UpstreamGatewayFailure
from .gateway import GatewayError, get_gateway
from .identity import format_phone_number
from .models import Booking, Payment
from .serializers import PaymentWebhookSerializer
from .services import generate_reference, is_manual_method

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (Payment.Status.SUCCESS, Payment.Status.PAID)
RETRYABLE_STATUSES = (Payment.Status.PENDING, Payment.Status.FAILED)


def apply_status(payment_id, new_status, external_reference=None, failure_reason=None):
    """
    Move a payment to ``new_status`` and cascade to its booking.

    Settled payments are sticky: a late pending or failed update for a
    payment that already succeeded is ignored.
    """
    if new_status not in Payment.Status.values:
        raise exceptions.ValidationError({"status": [f"Unknown payment status '{new_status}'."]})

    with transaction.atomic():
        try:
            payment = Payment.objects.select_for_update().get(pk=payment_id)
        except Payment.DoesNotExist:
            raise exceptions.NotFound("Payment not found.")

        if payment.is_settled and new_status not in SETTLED_STATUSES:
            logger.warning(
                "Ignoring %s update for settled payment %s (%s)",
                new_status, payment.customer_reference, payment.status,
            )
            return payment

        payment.status = new_status
        if external_reference:
            payment.external_reference = external_reference
        if new_status in SETTLED_STATUSES:
            payment.paid_at = payment.paid_at or timezone.now()
            payment.failure_reason = ""
        elif new_status == Payment.Status.FAILED:
            payment.failure_reason = failure_reason or payment.failure_reason or "Failed"
        payment.save()

        _cascade_to_booking(payment)

    logger.info("Payment %s is now %s", payment.customer_reference, payment.status)
    return payment


def _cascade_to_booking(payment):
    booking = Booking.objects.select_for_update().filter(pk=payment.booking_id).first()
    if booking is None:
        return
    if payment.status in SETTLED_STATUSES:
        booking.payment_status = Booking.PaymentStatus.PAID
        # Only a pending reservation is promoted. Checked-in stays keep their
        # status and cancelled ones stay cancelled; their slot may be rebooked.
        if booking.status == Booking.Status.PENDING:
            booking.status = Booking.Status.CONFIRMED
    elif payment.status == Payment.Status.FAILED:
        # Another attempt may already have paid for this booking.
        if booking.payment_status == Booking.PaymentStatus.PAID:
            return
        booking.payment_status = Booking.PaymentStatus.FAILED
    else:
        return
    booking.save(update_fields=["status", "payment_status", "updated_at"])


def handle_webhook(payload):
    """
    Apply a provider callback. Returns False when the reference is unknown.

    Unknown references are acknowledged without any change so the provider
    stops redelivering them.
    """
    serializer = PaymentWebhookSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    status, reference = data["status"], data["customer_reference"]

    payment = Payment.objects.filter(customer_reference=reference).first()
    if payment is None:
        logger.warning("Webhook for unknown reference %s ignored", reference)
        return False

    logger.info("Webhook for %s: %s", reference, status)
    if status.lower() == "success":
        apply_status(payment.pk, Payment.Status.SUCCESS, external_reference=data.get("provider_transaction_id"))
    else:
        apply_status(
            payment.pk,
            Payment.Status.FAILED,
            external_reference=data.get("provider_transaction_id"),
            failure_reason=data.get("message") or "Failed",
        )
    return True


def _narration(booking):
    return f"Booking {str(booking.pk)[:6]}"


def _request_prompt(payment):
    """Send the payment prompt; a failed call leaves the attempt marked failed."""
    try:
        get_gateway().request_payment(
            msisdn=payment.phone,
            amount=payment.amount,
            reference=payment.customer_reference,
            narration=_narration(payment.booking),
        )
    except GatewayError:
        Payment.objects.filter(pk=payment.pk).exclude(status__in=SETTLED_STATUSES).update(
            status=Payment.Status.FAILED,
            failure_reason="API Call Failed",
            updated_at=timezone.now(),
        )
        payment.refresh_from_db()
        raise UpstreamGatewayFailure()
    return payment


def initiate_payment(booking, phone, amount):
    """Open a new mobile-money attempt for ``booking`` and prompt the payer's phone."""
    payment = Payment.objects.create(
        booking=booking,
        user=booking.user,
        amount=amount,
        currency=booking_settings()["CURRENCY"],
        provider="mobile_money",
        phone=format_phone_number(phone),
        status=Payment.Status.PENDING,
        customer_reference=generate_reference(),
    )
    logger.info("Payment %s initiated for booking %s", payment.customer_reference, booking.pk)
    return _request_prompt(payment)


def retry_payment(payment):
    """
    Resend the prompt for a pending or failed mobile-money payment.

    The existing record and its customer reference are reused, so a late
    webhook for the earlier prompt still lands on this record.
    """
    if payment.status not in RETRYABLE_STATUSES:
        raise exceptions.ValidationError({"status": [f"Cannot retry a {payment.status} payment."]})
    if is_manual_method(payment.provider) or not payment.phone:
        raise exceptions.ValidationError({"provider": ["Only mobile-money payments can be retried."]})

    updated = Payment.objects.filter(pk=payment.pk, status__in=RETRYABLE_STATUSES).update(
        status=Payment.Status.PENDING,
        failure_reason="",
        updated_at=timezone.now(),
    )
    if not updated:
        # Settled between the read and the update.
        payment.refresh_from_db()
        return payment
    payment.refresh_from_db()
    logger.info("Retrying payment %s", payment.customer_reference)
    return _request_prompt(payment)
