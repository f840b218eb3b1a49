"""Escrow blueprint — buyer-side release of held funds.

Routes:
- POST /api/escrow/release   — buyer confirms receipt, releases escrow
- POST /api/pickup/confirm   — buyer scans the seller's QR beacon on site
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from hotmess.extensions import db, limiter
from hotmess.services.escrow_service import confirm_pickup, release_escrow

logger = logging.getLogger(__name__)

escrow_bp = Blueprint("escrow", __name__, url_prefix="/api")


@escrow_bp.route("/escrow/release", methods=["POST"])
@login_required
def release():
    """Release an escrow order to the seller.

    Body: {order_id, buyer_email}
    """
    data = request.get_json(silent=True) or {}

    result = release_escrow(
        order_id=data.get("order_id"),
        buyer_email=data.get("buyer_email"),
        actor=current_user,
    )
    db.session.commit()

    return jsonify(result), 200


@escrow_bp.route("/pickup/confirm", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def pickup_confirm():
    """Confirm a QR pickup and release the order.

    Body: {qr_code, lat, lng, photo_url?}
    """
    data = request.get_json(silent=True) or {}

    result = confirm_pickup(
        qr_code=data.get("qr_code"),
        lat=data.get("lat"),
        lng=data.get("lng"),
        caller=current_user,
        photo_url=data.get("photo_url"),
    )
    db.session.commit()

    return jsonify(result), 200
