"""Checkout blueprint — /api/checkout

Routes:
- POST /api/checkout  — price a purchase and open a Stripe Checkout Session

Body: {purchase_type, reference_id, quantity?, buyer_email?, success_url?, cancel_url?}
Header (optional): Idempotency-Key
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from hotmess.extensions import db, limiter
from hotmess.services.activity_service import log_settlement_audit
from hotmess.services.checkout_service import create_checkout, expire_orphaned_session

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


@checkout_bp.route("/checkout", methods=["POST"])
@login_required
@limiter.limit("20 per minute")
def checkout():
    """Create a pending purchase and return the Stripe checkout URL.

    SettlementErrors propagate to the app-level handler (rollback + JSON).
    """
    data = request.get_json(silent=True) or {}

    result = create_checkout(
        buyer=current_user,
        purchase_type=data.get("purchase_type"),
        reference_id=data.get("reference_id"),
        quantity=data.get("quantity"),
        buyer_email=data.get("buyer_email"),
        success_url=data.get("success_url"),
        cancel_url=data.get("cancel_url"),
        idempotency_key=request.headers.get("Idempotency-Key"),
    )

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Checkout commit failed after session {result['session_id']}: {e}",
                     exc_info=True)
        # Stripe already has the session; make sure nobody can pay it
        expire_orphaned_session(result["session_id"])
        log_settlement_audit("compensation.checkout_session_expired", {
            "stripe_session_id": result["session_id"],
            "error": str(e),
        }, actor_user_id=current_user.id)
        db.session.commit()
        return jsonify(error="store_error", message="Could not save your checkout. Please try again."), 500

    return jsonify(result), 201
