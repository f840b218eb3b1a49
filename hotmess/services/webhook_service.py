"""Webhook service — verified Stripe events in, settlement transitions out.

Responsible for:
- Verifying the Stripe-Signature header against STRIPE_WEBHOOK_SECRET
- Routing each event type to the settlement applier
- Logging every delivery in the stripe_events table

Redeliveries are NOT short-circuited here: the applier's conditional
updates make a second delivery a no-op, and a delivery whose first attempt
failed half-way must be able to finish on retry.
"""

import logging
from datetime import datetime, timezone

import stripe
from flask import current_app

from hotmess.extensions import db
from hotmess.models.stripe_event import StripeEvent
from hotmess.services import settlement_service
from hotmess.services.connect_service import sync_account

logger = logging.getLogger(__name__)

IGNORED = "ignored"


class WebhookSecretMissing(Exception):
    """STRIPE_WEBHOOK_SECRET is not configured; no event can be trusted."""


def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Args:
        payload: Raw request body (bytes or str), exactly as received.
        sig_header: Value of the Stripe-Signature header.

    Returns the verified Stripe event object.
    Raises WebhookSecretMissing if no secret is configured, or
    stripe.error.SignatureVerificationError on an invalid signature.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        raise WebhookSecretMissing("STRIPE_WEBHOOK_SECRET is not configured")
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def _record_delivery(event_id, event_type, result):
    """Insert or bump the delivery log row for this event."""
    now = datetime.now(timezone.utc)
    logged = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if logged:
        logged.delivery_count = StripeEvent.delivery_count + 1
        logged.last_received_at = now
        logged.result = result
        logger.info(f"Redelivery of webhook event {event_id} ({event_type}): {result}")
    else:
        db.session.add(StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            result=result,
        ))
    db.session.flush()


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Returns (success: bool, result: str). On failure the session is rolled
    back and the caller should answer 500 so Stripe retries.
    """
    if isinstance(event, stripe.StripeObject):
        # newer stripe releases no longer subclass dict
        event = event.to_dict()

    event_id = event["id"]
    event_type = event["type"]

    # --- Route to handler ---
    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "checkout.session.async_payment_succeeded": _handle_session_paid,
        "checkout.session.async_payment_failed": _handle_session_failed,
        "checkout.session.expired": _handle_session_expired,
        "payment_intent.succeeded": _handle_intent_succeeded,
        "payment_intent.payment_failed": _handle_intent_failed,
        "charge.refunded": _handle_charge_refunded,
        "account.updated": _handle_account_updated,
    }

    handler = handlers.get(event_type)
    try:
        if handler:
            result = handler(event["data"]["object"])
        else:
            logger.debug(f"Ignoring unhandled webhook event type {event_type}")
            result = IGNORED

        _record_delivery(event_id, event_type, result)
        db.session.commit()
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    logger.info(f"Webhook {event_id} ({event_type}): {result}")
    return True, result


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _metadata(obj):
    return dict(obj.get("metadata") or {})


def _handle_checkout_completed(session):
    """Handle checkout.session.completed.

    Delayed payment methods complete the session before the money arrives
    (payment_status "unpaid"); those settle on async_payment_succeeded.
    """
    if session.get("payment_status") != "paid":
        logger.info(
            f"Checkout session {session['id']} completed with payment_status "
            f"{session.get('payment_status')}, awaiting async payment"
        )
        return IGNORED
    return _handle_session_paid(session)


def _handle_session_paid(session):
    return settlement_service.apply_payment_succeeded(
        _metadata(session),
        session_id=session["id"],
        payment_intent_id=session.get("payment_intent"),
    )


def _handle_session_failed(session):
    return settlement_service.apply_payment_failed(
        _metadata(session),
        session_id=session["id"],
        payment_intent_id=session.get("payment_intent"),
    )


def _handle_session_expired(session):
    return settlement_service.apply_session_expired(
        _metadata(session), session_id=session["id"]
    )


def _handle_intent_succeeded(intent):
    return settlement_service.apply_payment_succeeded(
        _metadata(intent), payment_intent_id=intent["id"]
    )


def _handle_intent_failed(intent):
    return settlement_service.apply_payment_failed(
        _metadata(intent), payment_intent_id=intent["id"]
    )


def _handle_charge_refunded(charge):
    """Only a full refund unwinds the purchase; partial refunds are logged."""
    if not charge.get("refunded"):
        logger.info(
            f"Partial refund on charge {charge['id']} "
            f"({charge.get('amount_refunded')} of {charge.get('amount')}), no status change"
        )
        return IGNORED
    return settlement_service.apply_refund(
        _metadata(charge),
        payment_intent_id=charge.get("payment_intent"),
        amount_refunded=charge.get("amount_refunded"),
    )


def _handle_account_updated(account):
    if sync_account(account):
        return settlement_service.APPLIED
    return settlement_service.NOT_FOUND
