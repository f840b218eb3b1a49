"""Checkout service — prices purchases and opens Stripe Checkout Sessions.

Responsible for:
- Computing the authoritative amount for a ticket / product / credits
  purchase from the referenced record (client amounts are never trusted)
- Writing the pending Purchase and reserving ticket listings
- Creating the Stripe Checkout Session, stamped with
  {purchase_type, reference_id, purchase_id} metadata so the webhook can
  resolve it without re-deriving business context
- Idempotency-Key replay (same key + same buyer -> same session)
- Expiring an orphaned session if the local write fails after Stripe succeeded

Functions flush but do NOT commit; the caller commits.
"""

import logging
import time

import stripe
from flask import current_app

from hotmess.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    UpstreamError,
    ValidationError,
)
from hotmess.extensions import db
from hotmess.models.business import Business
from hotmess.models.catalog import Product, TicketListing
from hotmess.models.purchase import Purchase
from hotmess.services.activity_service import log_settlement_audit

logger = logging.getLogger(__name__)


def configure_stripe():
    """Point the Stripe client at the configured key, or fail closed."""
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        logger.error("Checkout attempted with no STRIPE_SECRET_KEY configured")
        raise UpstreamError(
            "Payments are not configured.", code="payments_not_configured"
        )
    stripe.api_key = api_key


def _parse_quantity(quantity):
    if quantity is None or quantity == "":
        return 1
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be a whole number.")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1.")
    return quantity


def _checked_redirect(url, default):
    """Only allow redirects back to our own app."""
    if not url:
        return default
    base_url = current_app.config["APP_BASE_URL"]
    if not url.startswith(base_url):
        raise ValidationError("Redirect URLs must point back to HOTMESS.")
    return url


# ──────────────────────────────────────────────
# Pricing
# ──────────────────────────────────────────────

def _line_item(name, unit_amount, quantity, currency):
    return {
        "price_data": {
            "currency": currency,
            "product_data": {"name": name},
            "unit_amount": unit_amount,
        },
        "quantity": quantity,
    }


def quote_purchase(purchase_type, reference_id, quantity, buyer):
    """Compute the authoritative price for a purchase.

    Returns a dict: amount_minor, seller_id, line_items.

    Raises:
        NotFoundError: reference doesn't exist.
        StateConflictError (not_purchasable): sold, inactive, out of stock, own item.
        ValidationError: bad quantity.
    """
    currency = current_app.config["PAYMENT_CURRENCY"]

    if purchase_type == "ticket":
        listing = db.session.get(TicketListing, reference_id)
        if listing is None:
            raise NotFoundError("Listing not found.")
        if listing.status != "active":
            raise StateConflictError(
                f"This listing is {listing.status} and cannot be purchased.",
                code="not_purchasable",
            )
        if listing.seller_id == buyer.id:
            raise StateConflictError(
                "You cannot buy your own tickets.", code="not_purchasable"
            )
        if listing.event_has_passed:
            raise StateConflictError(
                "This event has already passed.", code="not_purchasable"
            )
        if quantity > listing.ticket_quantity:
            raise ValidationError(
                f"Only {listing.ticket_quantity} ticket(s) available on this listing."
            )
        return {
            "amount_minor": listing.price_minor * quantity,
            "seller_id": listing.seller_id,
            "line_items": [
                _line_item(listing.event_name, listing.price_minor, quantity, currency),
            ],
        }

    if purchase_type == "product":
        product = db.session.get(Product, reference_id)
        if product is None:
            raise NotFoundError("Product not found.")
        if product.status != "active":
            raise StateConflictError(
                f"This product is {product.status.replace('_', ' ')}.",
                code="not_purchasable",
            )
        if product.seller_id and product.seller_id == buyer.id:
            raise StateConflictError(
                "You cannot buy your own product.", code="not_purchasable"
            )
        if not product.is_digital and product.inventory_count < quantity:
            raise StateConflictError(
                f"Only {product.inventory_count} left in stock.", code="not_purchasable"
            )

        line_items = [_line_item(product.name, product.price_minor, quantity, currency)]
        amount = product.price_minor * quantity
        if not product.is_digital and product.shipping_minor:
            line_items.append(_line_item("Shipping", product.shipping_minor, 1, currency))
            amount += product.shipping_minor
        return {
            "amount_minor": amount,
            "seller_id": product.seller_id,
            "line_items": line_items,
        }

    if purchase_type == "credits":
        business = db.session.get(Business, reference_id)
        if business is None:
            raise NotFoundError("Business not found.")
        if business.owner_id != buyer.id:
            raise AuthorizationError("Only the business owner can buy credits.")

        min_credits = current_app.config["CREDITS_MIN_PURCHASE"]
        max_credits = current_app.config["CREDITS_MAX_PURCHASE"]
        if not min_credits <= quantity <= max_credits:
            raise ValidationError(
                f"Credit bundles must be between {min_credits} and {max_credits} credits."
            )
        unit_price = current_app.config["CREDIT_UNIT_PRICE_MINOR"]
        return {
            "amount_minor": unit_price * quantity,
            "seller_id": None,
            "line_items": [
                _line_item("HOTMESS advertising credits", unit_price, quantity, currency),
            ],
        }

    raise ValidationError(
        f"Invalid purchase_type '{purchase_type}'. "
        f"Must be one of: {', '.join(Purchase.PURCHASE_TYPES)}"
    )


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def _checkout_payload(purchase):
    return {
        "checkout_url": purchase.stripe_checkout_url,
        "session_id": purchase.stripe_session_id,
        "purchase_id": purchase.id,
        "amount": purchase.amount_minor,
        "currency": purchase.currency,
        "status": purchase.status,
    }


def create_checkout(buyer, purchase_type, reference_id, quantity=None,
                    buyer_email=None, success_url=None, cancel_url=None,
                    idempotency_key=None):
    """Create a pending Purchase and its Stripe Checkout Session.

    Args:
        buyer: Authenticated User.
        purchase_type: ticket | product | credits.
        reference_id: Listing / product / business id.
        quantity: Tickets, units, or credits (default 1).
        buyer_email: Receipt email (defaults to the buyer's account email).
        success_url / cancel_url: Optional, must be on APP_BASE_URL.
        idempotency_key: Optional client key; a retry with the same key
            returns the original session instead of opening a new one.

    Returns:
        dict: checkout_url, session_id, purchase_id, amount, currency, status.

    Raises:
        SettlementError subclasses for bad input / state, UpstreamError if
        Stripe is unconfigured or fails.
    """
    if not purchase_type or not reference_id:
        raise ValidationError("purchase_type and reference_id are required.")
    if purchase_type not in Purchase.PURCHASE_TYPES:
        raise ValidationError(
            f"Invalid purchase_type '{purchase_type}'. "
            f"Must be one of: {', '.join(Purchase.PURCHASE_TYPES)}"
        )
    quantity = _parse_quantity(quantity)
    buyer_email = (buyer_email or buyer.email).lower().strip()

    configure_stripe()

    # --- Idempotent replay ---
    if idempotency_key:
        existing = Purchase.query.filter_by(
            buyer_id=buyer.id, idempotency_key=idempotency_key
        ).first()
        if existing:
            if (existing.purchase_type, existing.reference_id) != (purchase_type, reference_id):
                raise ValidationError(
                    "This Idempotency-Key was already used for a different purchase."
                )
            if existing.status == "pending":
                logger.info(f"Idempotent checkout replay for purchase {existing.id}")
                return _checkout_payload(existing)
            if existing.status in ("paid", "refunded"):
                raise StateConflictError(
                    "This Idempotency-Key belongs to a completed purchase.",
                    code="already_purchased",
                )
            # cancelled / payment_failed: the old session is dead, free the key
            logger.info(
                f"Idempotency-Key reused after {existing.status} purchase "
                f"{existing.id}, opening a new session"
            )
            existing.idempotency_key = None
            db.session.flush()

    quote = quote_purchase(purchase_type, reference_id, quantity, buyer)
    currency = current_app.config["PAYMENT_CURRENCY"]

    # --- Reserve the listing while checkout is open ---
    if purchase_type == "ticket":
        reserved = db.session.execute(
            db.update(TicketListing)
            .where(TicketListing.id == reference_id, TicketListing.status == "active")
            .values(status="reserved")
        )
        if reserved.rowcount == 0:
            raise StateConflictError(
                "This listing was just reserved by another buyer.", code="not_purchasable"
            )

    purchase = Purchase(
        purchase_type=purchase_type,
        reference_id=reference_id,
        buyer_id=buyer.id,
        buyer_email=buyer_email,
        seller_id=quote["seller_id"],
        quantity=quantity,
        amount_minor=quote["amount_minor"],
        currency=currency,
        status="pending",
        idempotency_key=idempotency_key,
    )
    db.session.add(purchase)
    db.session.flush()

    metadata = {
        "purchase_type": purchase_type,
        "reference_id": reference_id,
        "purchase_id": purchase.id,
    }

    app_base_url = current_app.config["APP_BASE_URL"]
    ttl_minutes = current_app.config["CHECKOUT_SESSION_TTL_MINUTES"]

    session_params = dict(
        mode="payment",
        customer_email=buyer_email,
        line_items=quote["line_items"],
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
        success_url=_checked_redirect(
            success_url,
            f"{app_base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
        ),
        cancel_url=_checked_redirect(cancel_url, f"{app_base_url}/checkout/cancel"),
        expires_at=int(time.time()) + ttl_minutes * 60,
    )
    if idempotency_key:
        # per attempt: a retry after rollback sends a new purchase_id and expires_at
        session_params["idempotency_key"] = (
            f"checkout-{buyer.id}-{idempotency_key}-{purchase.id}"
        )

    try:
        session = stripe.checkout.Session.create(**session_params)
    except stripe.error.StripeError as e:
        logger.error(f"Stripe session creation failed for purchase {purchase.id}: {e}")
        raise UpstreamError(
            "The payment provider is unavailable. Please try again.",
            code="payment_provider_error",
        )

    purchase.stripe_session_id = session.id
    purchase.stripe_checkout_url = session.url
    payment_intent = getattr(session, "payment_intent", None)
    if payment_intent:
        purchase.stripe_payment_intent_id = payment_intent
    db.session.flush()

    log_settlement_audit("checkout.created", {
        "purchase_id": purchase.id,
        "purchase_type": purchase_type,
        "reference_id": reference_id,
        "amount_minor": purchase.amount_minor,
        "stripe_session_id": session.id,
    }, actor_user_id=buyer.id)

    logger.info(
        f"Checkout {session.id} opened for {purchase_type} {reference_id} "
        f"({purchase.amount_minor} {currency})"
    )
    return _checkout_payload(purchase)


def expire_orphaned_session(session_id):
    """Compensation: expire a Stripe session whose Purchase row was never saved.

    Used when Stripe accepted the session but our commit failed; without this
    the buyer could pay for a purchase we have no record of.
    """
    if not session_id:
        return
    try:
        stripe.checkout.Session.expire(session_id)
        logger.error(f"COMPENSATION: expired orphaned checkout session {session_id}")
    except stripe.error.StripeError as e:
        logger.error(
            f"COMPENSATION FAILED: could not expire orphaned session {session_id}: {e}"
        )
