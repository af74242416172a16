"""
Stripe gateway for marketplace payments.

Every Stripe call goes through this module so views, webhooks and management
commands share the same error handling: SDK failures are logged and re-raised
as PaymentProviderError.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

import stripe
from django.conf import settings
from django.db import transaction

from .exceptions import PaymentProviderError, WebhookSignatureError

logger = logging.getLogger(__name__)

HANDLED_EVENT_TYPES = (
    'payment_intent.succeeded',
    'payment_intent.processing',
    'payment_intent.payment_failed',
    'payment_intent.canceled',
    'charge.refunded',
)


def to_minor_units(amount):
    """
    Convert a decimal amount to Stripe's integer minor units (cents).

    Rounds half up: Decimal('10.005') -> 1001.
    """
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(value):
    """Convert Stripe minor units back to a two-place Decimal."""
    return (Decimal(int(value)) / 100).quantize(Decimal('0.01'))


def _configure():
    stripe.api_key = settings.STRIPE_SECRET_KEY


def create_payment_intent(amount, metadata, currency=None):
    """
    Create a card PaymentIntent.

    Args:
        amount: Decimal amount in major units
        metadata: dict of identifiers stored on the intent
        currency: ISO currency code, defaults to STRIPE_CURRENCY

    Returns:
        stripe.PaymentIntent

    Raises:
        PaymentProviderError: If Stripe rejects the request
    """
    _configure()
    try:
        return stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=(currency or settings.STRIPE_CURRENCY).lower(),
            metadata={key: str(value) for key, value in metadata.items()},
            payment_method_types=['card'],
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe PaymentIntent creation failed. Error: {e}", exc_info=True)
        raise PaymentProviderError('Payment provider error while creating the payment.', original=e) from e


def retrieve_payment_intent(payment_intent_id):
    """
    Fetch a PaymentIntent by id.

    Raises:
        PaymentProviderError: If Stripe cannot be reached or the id is unknown
    """
    _configure()
    try:
        return stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        logger.error(
            f"Stripe PaymentIntent retrieval failed. Intent: {payment_intent_id}, Error: {e}",
            exc_info=True
        )
        raise PaymentProviderError('Payment provider error while retrieving the payment.', original=e) from e


def create_refund(payment_intent_id, amount, reason='requested_by_customer'):
    """
    Refund part or all of a PaymentIntent.

    Args:
        payment_intent_id: Stripe PaymentIntent id
        amount: Decimal amount in major units
        reason: Stripe refund reason code

    Returns:
        stripe.Refund
    """
    _configure()
    try:
        return stripe.Refund.create(
            payment_intent=payment_intent_id,
            amount=to_minor_units(amount),
            reason=reason,
        )
    except stripe.StripeError as e:
        logger.error(
            f"Stripe refund failed. Intent: {payment_intent_id}, Amount: {amount}, Error: {e}",
            exc_info=True
        )
        raise PaymentProviderError('Payment provider error while processing the refund.', original=e) from e


def construct_webhook_event(payload, signature):
    """
    Verify a webhook payload against the Stripe-Signature header.

    Raises:
        WebhookSignatureError: If the payload is malformed or the signature is wrong
    """
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        raise WebhookSignatureError('Invalid webhook payload.') from e
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError('Invalid webhook signature.') from e


def handle_webhook_event(event):
    """
    Apply a verified Stripe event to the matching Payment.

    Replaying an event is a no-op because Payment.sync_from_intent ignores
    transitions the state machine does not allow.

    Returns:
        str: 'updated', 'unchanged' or 'ignored'
    """
    from .models import Payment

    event_type = event['type']
    if event_type not in HANDLED_EVENT_TYPES:
        logger.info(f"Ignoring Stripe event. Type: {event_type}")
        return 'ignored'

    obj = event['data']['object']
    payment_intent_id = obj['payment_intent'] if event_type == 'charge.refunded' else obj['id']

    with transaction.atomic():
        payment = Payment.objects.select_for_update().filter(
            payment_intent_id=payment_intent_id
        ).first()

        if payment is None:
            logger.warning(
                f"Stripe event for unknown payment. Type: {event_type}, Intent: {payment_intent_id}"
            )
            return 'ignored'

        old_status = payment.status

        if event_type == 'charge.refunded':
            if payment.status != 'completed':
                return 'unchanged'
            refunded = from_minor_units(obj.get('amount_refunded') or to_minor_units(payment.amount))
            payment.mark_refunded(
                min(refunded, payment.amount),
                reason=payment.refund_reason or 'Refunded via Stripe',
            )
            changed = True
        elif event_type == 'payment_intent.succeeded':
            changed = payment.sync_from_intent('succeeded')
        elif event_type == 'payment_intent.processing':
            changed = payment.sync_from_intent('processing')
        elif event_type == 'payment_intent.canceled':
            changed = payment.sync_from_intent('canceled')
        else:
            changed = payment.sync_from_intent(
                obj.get('status') or 'requires_payment_method',
                failed_attempt=True,
            )

    if changed:
        logger.info(
            f"Payment updated from Stripe event. Payment ID: {payment.id}, "
            f"Type: {event_type}, Old Status: {old_status}, New Status: {payment.status}"
        )
        return 'updated'
    return 'unchanged'
