"""Escrow service — releasing held XP to sellers.

Three release paths share one core (_settle):
- release_escrow(): buyer confirms manually
- confirm_pickup(): buyer scans the seller's QR pickup beacon on site
- release_due_escrows(): auto-release once the confirmation window lapses

The release itself is one conditional UPDATE
(status='escrow' AND no open/investigating dispute) followed by the two
ledger postings, all inside the caller's transaction. If the UPDATE
matches nothing, the order was already released (or a dispute landed in
between) and nothing else is written. There is no manual compensation:
rolling back the session undoes the balance changes together with the
status change.

Functions flush but do NOT commit; the caller commits
(release_due_escrows commits per order, since it is a batch job).
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import exists, update

from hotmess.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from hotmess.extensions import db
from hotmess.models.escrow import Dispute, EscrowOrder, PickupBeacon
from hotmess.models.purchase import Purchase
from hotmess.services.activity_service import enqueue_notification, log_settlement_audit
from hotmess.services.geo import haversine_meters
from hotmess.services.ledger_service import get_or_create_platform_account, post_entry

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


# ──────────────────────────────────────────────
# Fee split
# ──────────────────────────────────────────────

def split_platform_fee(total, rate):
    """Split an escrow total into (platform_fee, seller_amount).

    The fee is rounded half-up to a whole unit and the seller gets the
    remainder, so fee + seller_amount == total exactly.

    >>> split_platform_fee(1000, Decimal("0.10"))
    (100, 900)
    >>> split_platform_fee(5, Decimal("0.10"))
    (1, 4)
    """
    if total < 0:
        raise ValidationError("Escrow total cannot be negative.")
    rate = Decimal(str(rate))
    if rate < 0 or rate > 1:
        raise ValidationError(f"Platform fee rate {rate} must be between 0 and 1.")

    fee = int((Decimal(total) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return fee, total - fee


def _fee_rate():
    return Decimal(str(current_app.config["PLATFORM_FEE_RATE"]))


# ──────────────────────────────────────────────
# Release core
# ──────────────────────────────────────────────

def _active_dispute_clause():
    return exists().where(
        Dispute.order_id == EscrowOrder.id,
        Dispute.status.in_(Dispute.ACTIVE_STATUSES),
    ).correlate(EscrowOrder)


def has_active_dispute(order_id):
    return db.session.query(
        exists().where(
            Dispute.order_id == order_id,
            Dispute.status.in_(Dispute.ACTIVE_STATUSES),
        )
    ).scalar()


def _check_releasable(order):
    """Raise the specific StateConflictError blocking release, if any."""
    if order.status == "completed":
        raise StateConflictError(
            "This order has already been completed.", code="already_completed"
        )
    if order.status != "escrow":
        raise StateConflictError(
            f"Order is {order.status} and cannot be released.", code="invalid_status"
        )
    if has_active_dispute(order.id):
        raise StateConflictError(
            "A dispute is open on this order. Funds stay in escrow until it is resolved.",
            code="dispute_active",
        )


def _settle(order, released_by, actor_user_id=None, transaction_type="escrow_release"):
    """Release an escrow order exactly once and post the ledger entries.

    Returns (platform_fee, seller_amount).
    Raises StateConflictError if another release (or a dispute) won the race.
    """
    now = datetime.now(timezone.utc)
    platform_fee, seller_amount = split_platform_fee(order.total_xp, _fee_rate())

    result = db.session.execute(
        update(EscrowOrder)
        .where(
            EscrowOrder.id == order.id,
            EscrowOrder.status == "escrow",
            ~_active_dispute_clause(),
        )
        .values(
            status="completed",
            escrow_released_at=now,
            escrow_released_by=released_by,
            platform_fee_xp=platform_fee,
            seller_received_xp=seller_amount,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        db.session.refresh(order)
        _check_releasable(order)
        # Predicate failed but the re-read looks releasable: treat as lost race
        raise StateConflictError(
            "This order has already been completed.", code="already_completed"
        )

    platform = get_or_create_platform_account()

    post_entry(
        order.seller_id,
        seller_amount,
        transaction_type,
        currency="xp",
        reference_id=order.id,
        reference_type="escrow_order",
        metadata={"released_by": released_by, "total_xp": order.total_xp},
    )
    post_entry(
        platform.id,
        platform_fee,
        "platform_fee",
        currency="xp",
        reference_id=order.id,
        reference_type="escrow_order",
        metadata={"seller_id": order.seller_id, "fee_rate": str(_fee_rate())},
    )

    # Underlying purchase is done once its escrow is released
    db.session.execute(
        update(Purchase)
        .where(
            Purchase.id == order.purchase_id,
            Purchase.status.in_(("paid", "delivered")),
        )
        .values(status="completed", updated_at=now)
        .execution_options(synchronize_session="fetch")
    )

    enqueue_notification(
        order.seller_id,
        "escrow_released",
        "Payment Released",
        f"{seller_amount} XP from your sale has been released to your balance.",
        link=f"/orders/{order.id}",
    )

    log_settlement_audit("escrow.released", {
        "order_id": order.id,
        "released_by": released_by,
        "total_xp": order.total_xp,
        "platform_fee_xp": platform_fee,
        "seller_received_xp": seller_amount,
    }, actor_user_id=actor_user_id)

    db.session.refresh(order)
    logger.info(
        f"Escrow {order.id} released by {released_by}: "
        f"seller +{seller_amount} XP, platform fee {platform_fee} XP"
    )
    return platform_fee, seller_amount


# ──────────────────────────────────────────────
# Manual release
# ──────────────────────────────────────────────

def release_escrow(order_id, buyer_email, actor):
    """Buyer-triggered release of an escrow order.

    Args:
        order_id: EscrowOrder UUID string.
        buyer_email: Email the caller claims to be buying as.
        actor: The authenticated User making the call.

    Returns:
        dict with success, order_id, seller_received_amount, platform_fee.

    Raises:
        ValidationError: Missing fields.
        NotFoundError: Order does not exist.
        AuthorizationError: Caller is not the order's buyer.
        StateConflictError: Already completed, wrong status, or dispute active.
    """
    if not order_id or not buyer_email:
        raise ValidationError("order_id and buyer_email are required.")

    order = db.session.get(EscrowOrder, order_id)
    if order is None:
        raise NotFoundError("Order not found.")

    buyer_email = buyer_email.lower().strip()
    if buyer_email != order.buyer_email.lower() or actor.id != order.buyer_id:
        raise AuthorizationError("Only the buyer can release this order.")

    _check_releasable(order)
    platform_fee, seller_amount = _settle(order, buyer_email, actor_user_id=actor.id)

    return {
        "success": True,
        "order_id": order.id,
        "seller_received_amount": seller_amount,
        "platform_fee": platform_fee,
    }


# ──────────────────────────────────────────────
# QR pickup confirmation
# ──────────────────────────────────────────────

def _parse_coordinate(value, name, limit):
    try:
        coord = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number.")
    if not -limit <= coord <= limit:
        raise ValidationError(f"{name} is out of range.")
    return coord


def confirm_pickup(qr_code, lat, lng, caller, photo_url=None):
    """Release escrow when the buyer scans the pickup beacon on site.

    Checks, in order: beacon exists, caller is the buyer, not already
    picked up, not expired, within PICKUP_RADIUS_METERS (inclusive).
    Then runs the standard release and credits any Sweat the order carries.

    An expired beacon is marked expired and committed before the scan is
    rejected, so the rejection sticks even though the request fails.

    Returns:
        dict with success, order_completed, distance_meters and the split.
    """
    if not qr_code:
        raise ValidationError("qr_code is required.")
    lat = _parse_coordinate(lat, "lat", 90)
    lng = _parse_coordinate(lng, "lng", 180)

    beacon = PickupBeacon.query.filter_by(qr_code=qr_code).first()
    if beacon is None:
        raise NotFoundError("Pickup code not found.")

    order = beacon.order
    if order.buyer_id != caller.id:
        raise AuthorizationError("Only the buyer can confirm this pickup.")

    if beacon.status == "picked_up":
        raise StateConflictError(
            "This order has already been picked up.", code="already_picked_up"
        )

    if beacon.status == "expired" or beacon.is_expired():
        db.session.execute(
            update(PickupBeacon)
            .where(PickupBeacon.id == beacon.id, PickupBeacon.status == "active")
            .values(status="expired")
            .execution_options(synchronize_session="fetch")
        )
        db.session.commit()
        logger.info(f"Pickup beacon {beacon.id} expired, scan rejected")
        raise StateConflictError("This pickup code has expired.", code="pickup_expired")

    distance = haversine_meters(lat, lng, beacon.lat, beacon.lng)
    radius = current_app.config["PICKUP_RADIUS_METERS"]
    if distance > radius:
        raise StateConflictError(
            f"You are {int(round(distance))}m from the pickup point. "
            f"Move within {int(radius)}m to confirm.",
            code="too_far",
        )

    _check_releasable(order)

    result = db.session.execute(
        update(PickupBeacon)
        .where(PickupBeacon.id == beacon.id, PickupBeacon.status == "active")
        .values(
            status="picked_up",
            picked_up_at=datetime.now(timezone.utc),
            photo_url=photo_url,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise StateConflictError(
            "This order has already been picked up.", code="already_picked_up"
        )

    platform_fee, seller_amount = _settle(
        order,
        caller.email,
        actor_user_id=caller.id,
        transaction_type="pickup_release",
    )

    if order.total_sweat:
        post_entry(
            order.seller_id,
            order.total_sweat,
            "pickup_release",
            currency="sweat",
            reference_id=order.id,
            reference_type="escrow_order",
            metadata={"beacon_id": beacon.id},
        )

    log_settlement_audit("pickup.confirmed", {
        "order_id": order.id,
        "beacon_id": beacon.id,
        "distance_meters": round(distance, 1),
        "photo_url": photo_url,
    }, actor_user_id=caller.id)

    return {
        "success": True,
        "order_completed": True,
        "order_id": order.id,
        "distance_meters": round(distance, 1),
        "seller_received_amount": seller_amount,
        "platform_fee": platform_fee,
    }


# ──────────────────────────────────────────────
# Auto-release (flask release-escrows)
# ──────────────────────────────────────────────

def release_due_escrows(now=None):
    """Release every escrow whose confirmation window has lapsed.

    Orders with an open/investigating dispute are left alone. Each order
    commits (or rolls back) on its own so one failure doesn't block the rest.

    Returns dict: released (list of ids), skipped (list of (id, reason)),
    errors (list of (id, message)).
    """
    now = now or datetime.now(timezone.utc)
    results = {"released": [], "skipped": [], "errors": []}

    due_ids = [
        row.id
        for row in db.session.query(EscrowOrder.id)
        .filter(
            EscrowOrder.status == "escrow",
            EscrowOrder.auto_release_at.isnot(None),
            EscrowOrder.auto_release_at <= now,
        )
        .order_by(EscrowOrder.auto_release_at)
        .all()
    ]

    for order_id in due_ids:
        order = db.session.get(EscrowOrder, order_id)
        try:
            _check_releasable(order)
            _settle(order, SYSTEM_ACTOR)
            db.session.commit()
            results["released"].append(order_id)
        except StateConflictError as e:
            db.session.rollback()
            results["skipped"].append((order_id, e.code))
            logger.info(f"Auto-release skipped for {order_id}: {e.code}")
        except Exception as e:
            db.session.rollback()
            results["errors"].append((order_id, str(e)))
            logger.error(f"Auto-release failed for {order_id}: {e}", exc_info=True)

    return results
