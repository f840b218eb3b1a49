"""Settlement service — applies verified payment outcomes to purchases.

Responsible for:
- pending -> paid on payment success, with type-specific side effects
  (ticket listing sold, product inventory/digital delivery, business credits)
- Opening the escrow hold for seller-backed purchases
- pending -> payment_failed / cancelled, releasing reserved listings
- Refunds

Stripe delivers webhooks at least once, so every entry point here is safe
to re-run. Each status change is a single conditional UPDATE
(`... WHERE status = 'pending'`); zero rows affected means the transition
was already applied (or the purchase is terminal) and all side effects are
skipped.

Functions flush but do NOT commit; the caller commits.

Result strings returned to the webhook layer:
    "applied"    — transition performed
    "skipped"    — already applied / terminal, nothing changed
    "not_found"  — purchase no longer exists, nothing to update
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import case, update

from hotmess.extensions import db
from hotmess.models.business import Business
from hotmess.models.catalog import Product, TicketListing
from hotmess.models.escrow import EscrowOrder
from hotmess.models.purchase import Purchase
from hotmess.services.activity_service import enqueue_notification, log_settlement_audit

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
NOT_FOUND = "not_found"


# ──────────────────────────────────────────────
# Lookup
# ──────────────────────────────────────────────

def resolve_purchase(metadata, session_id=None, payment_intent_id=None):
    """Find the Purchase a Stripe object refers to.

    Checkout stamps purchase_id into the session (and payment intent)
    metadata; the session / payment intent ids are fallbacks for objects
    created before that, or for refunds that only carry the charge's intent.

    Returns a Purchase or None.
    """
    metadata = metadata or {}
    purchase_id = metadata.get("purchase_id")
    if purchase_id:
        purchase = db.session.get(Purchase, purchase_id)
        if purchase:
            return purchase

    if session_id:
        purchase = Purchase.query.filter_by(stripe_session_id=session_id).first()
        if purchase:
            return purchase

    if payment_intent_id:
        return Purchase.query.filter_by(
            stripe_payment_intent_id=payment_intent_id
        ).first()

    return None


def _transition(purchase_id, from_statuses, **values):
    """Conditionally move a purchase out of one of from_statuses.

    Returns True if this call performed the transition.
    """
    values.setdefault("updated_at", datetime.now(timezone.utc))
    result = db.session.execute(
        update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.status.in_(from_statuses))
        .values(**values)
    )
    return result.rowcount == 1


def _release_listing(listing_id):
    """Put a reserved listing back on sale (no-op if it's not reserved)."""
    db.session.execute(
        update(TicketListing)
        .where(TicketListing.id == listing_id, TicketListing.status == "reserved")
        .values(status="active", updated_at=datetime.now(timezone.utc))
    )


# ──────────────────────────────────────────────
# Payment succeeded
# ──────────────────────────────────────────────

def apply_payment_succeeded(metadata, session_id=None, payment_intent_id=None):
    """Mark a purchase paid and run its type-specific side effects once.

    Returns one of APPLIED / SKIPPED / NOT_FOUND.
    Store errors propagate so the webhook answers 500 and Stripe retries.
    """
    purchase = resolve_purchase(metadata, session_id, payment_intent_id)
    if purchase is None:
        logger.warning(
            f"payment succeeded for unknown purchase "
            f"(metadata={dict(metadata or {})}, session={session_id})"
        )
        return NOT_FOUND

    now = datetime.now(timezone.utc)
    values = {"status": "paid", "paid_at": now}
    if payment_intent_id:
        values["stripe_payment_intent_id"] = payment_intent_id

    if not _transition(purchase.id, ("pending",), **values):
        db.session.refresh(purchase)
        if purchase.status in Purchase.SETTLED_STATUSES:
            logger.info(f"Purchase {purchase.id} already {purchase.status}, skipping")
        else:
            logger.warning(
                f"Payment succeeded for purchase {purchase.id} in terminal "
                f"status {purchase.status}, not applying"
            )
        return SKIPPED

    db.session.refresh(purchase)

    handlers = {
        "ticket": _apply_ticket_paid,
        "product": _apply_product_paid,
        "credits": _apply_credits_paid,
    }
    handlers[purchase.purchase_type](purchase, now)

    log_settlement_audit("purchase.paid", {
        "purchase_id": purchase.id,
        "purchase_type": purchase.purchase_type,
        "reference_id": purchase.reference_id,
        "amount_minor": purchase.amount_minor,
        "currency": purchase.currency,
    })

    enqueue_notification(
        purchase.buyer_id,
        "purchase_confirmed",
        "Purchase Confirmed",
        "Your payment went through. Thanks for buying on HOTMESS.",
        link=f"/orders/{purchase.id}",
    )

    db.session.flush()
    logger.info(f"Purchase {purchase.id} ({purchase.purchase_type}) marked paid")
    return APPLIED


def _apply_ticket_paid(purchase, now):
    """Listing -> sold, escrow opened for the seller."""
    listing = db.session.get(TicketListing, purchase.reference_id)
    if listing is None:
        logger.warning(
            f"Ticket listing {purchase.reference_id} for purchase {purchase.id} no longer exists"
        )
        return

    db.session.execute(
        update(TicketListing)
        .where(TicketListing.id == listing.id)
        .values(status="sold", sold_at=now, updated_at=now)
    )

    open_escrow(
        purchase,
        total_xp=listing.price_xp * purchase.quantity,
        now=now,
    )

    enqueue_notification(
        listing.seller_id,
        "ticket_sold",
        "Ticket Sold!",
        f"Your {listing.event_name} ticket has been sold. "
        f"Payout is held in escrow until the buyer confirms.",
        link=f"/orders/{purchase.id}",
    )


def _apply_product_paid(purchase, now):
    """Digital -> delivered; inventory decremented (floored at zero); escrow opened."""
    product = db.session.get(Product, purchase.reference_id)
    if product is None:
        logger.warning(
            f"Product {purchase.reference_id} for purchase {purchase.id} no longer exists"
        )
        return

    if product.is_digital:
        db.session.execute(
            update(Purchase)
            .where(Purchase.id == purchase.id)
            .values(digital_delivered=True, status="delivered", updated_at=now)
        )

    # Atomic decrement, floored at zero
    values = {
        "inventory_count": case(
            (Product.inventory_count > purchase.quantity,
             Product.inventory_count - purchase.quantity),
            else_=0,
        ),
        "updated_at": now,
    }
    if not product.is_digital:
        # Physical stock ran out
        values["status"] = case(
            (Product.inventory_count > purchase.quantity, Product.status),
            else_="sold_out",
        )
    db.session.execute(
        update(Product).where(Product.id == product.id).values(**values)
    )

    if purchase.seller_id:
        total_sweat = None
        if product.price_sweat:
            total_sweat = product.price_sweat * purchase.quantity
        open_escrow(
            purchase,
            total_xp=product.price_xp * purchase.quantity,
            total_sweat=total_sweat,
            now=now,
        )

    db.session.refresh(purchase)


def _apply_credits_paid(purchase, now):
    """Atomic increment of the business's credit balance."""
    result = db.session.execute(
        update(Business)
        .where(Business.id == purchase.reference_id)
        .values(
            credit_balance=Business.credit_balance + purchase.quantity,
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        logger.warning(
            f"Business {purchase.reference_id} for credits purchase {purchase.id} no longer exists"
        )


def open_escrow(purchase, total_xp, total_sweat=None, now=None):
    """Create the EscrowOrder holding the seller's payout for a purchase.

    One escrow per purchase (purchase_id is unique); the conditional
    pending -> paid update upstream guarantees this runs once.
    """
    now = now or datetime.now(timezone.utc)
    hours = current_app.config["ESCROW_AUTO_RELEASE_HOURS"]

    order = EscrowOrder(
        purchase_id=purchase.id,
        buyer_id=purchase.buyer_id,
        buyer_email=purchase.buyer_email,
        seller_id=purchase.seller_id,
        total_xp=total_xp,
        total_sweat=total_sweat,
        status="escrow",
        auto_release_at=now + timedelta(hours=hours),
    )
    db.session.add(order)
    db.session.flush()

    log_settlement_audit("escrow.opened", {
        "order_id": order.id,
        "purchase_id": purchase.id,
        "total_xp": total_xp,
        "total_sweat": total_sweat,
    })
    return order


# ──────────────────────────────────────────────
# Payment failed / session expired
# ──────────────────────────────────────────────

def apply_payment_failed(metadata, session_id=None, payment_intent_id=None):
    """pending -> payment_failed. No inventory or balance changes."""
    purchase = resolve_purchase(metadata, session_id, payment_intent_id)
    if purchase is None:
        logger.warning(f"payment failed for unknown purchase (metadata={dict(metadata or {})})")
        return NOT_FOUND

    if not _transition(purchase.id, ("pending",), status="payment_failed"):
        logger.info(f"Purchase {purchase.id} not pending, ignoring payment failure")
        return SKIPPED

    if purchase.purchase_type == "ticket":
        _release_listing(purchase.reference_id)

    log_settlement_audit("purchase.payment_failed", {
        "purchase_id": purchase.id,
        "purchase_type": purchase.purchase_type,
    })
    enqueue_notification(
        purchase.buyer_id,
        "payment_failed",
        "Payment Failed",
        "Your payment could not be processed. Please try again.",
    )
    db.session.flush()
    logger.info(f"Purchase {purchase.id} marked payment_failed")
    return APPLIED


def apply_session_expired(metadata, session_id=None):
    """Abandoned checkout: pending -> cancelled and release the listing."""
    purchase = resolve_purchase(metadata, session_id)
    if purchase is None:
        return NOT_FOUND

    if not _transition(purchase.id, ("pending",), status="cancelled"):
        return SKIPPED

    if purchase.purchase_type == "ticket":
        _release_listing(purchase.reference_id)

    log_settlement_audit("purchase.cancelled", {
        "purchase_id": purchase.id,
        "reason": "checkout_session_expired",
    })
    db.session.flush()
    logger.info(f"Purchase {purchase.id} cancelled (session expired)")
    return APPLIED


# ──────────────────────────────────────────────
# Refunds
# ──────────────────────────────────────────────

def apply_refund(metadata, payment_intent_id=None, amount_refunded=None):
    """Mark a paid purchase refunded and cancel its escrow if still held.

    An escrow that was already released stays released; the mismatch is
    logged for the payments desk rather than clawed back here.
    """
    purchase = resolve_purchase(metadata, payment_intent_id=payment_intent_id)
    if purchase is None:
        return NOT_FOUND

    if not _transition(purchase.id, Purchase.SETTLED_STATUSES, status="refunded"):
        return SKIPPED

    now = datetime.now(timezone.utc)
    escrow = EscrowOrder.query.filter_by(purchase_id=purchase.id).first()
    if escrow is not None:
        result = db.session.execute(
            update(EscrowOrder)
            .where(EscrowOrder.id == escrow.id, EscrowOrder.status.in_(("escrow", "disputed")))
            .values(status="refunded", updated_at=now)
        )
        if result.rowcount == 0:
            logger.error(
                f"Refund for purchase {purchase.id} after escrow {escrow.id} "
                f"was already {escrow.status}; seller payout not reversed"
            )

    log_settlement_audit("purchase.refunded", {
        "purchase_id": purchase.id,
        "amount_refunded": amount_refunded,
    })
    enqueue_notification(
        purchase.buyer_id,
        "refund_processed",
        "Refund Processed",
        "Your refund has been processed.",
        link=f"/orders/{purchase.id}",
    )
    db.session.flush()
    return APPLIED
