"""Connect blueprint — /api/connect/*

Routes:
- POST /api/connect/onboard  — Stripe Express onboarding link for the seller
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from hotmess.extensions import db
from hotmess.services.connect_service import start_onboarding

connect_bp = Blueprint("connect", __name__, url_prefix="/api/connect")


@connect_bp.route("/onboard", methods=["POST"])
@login_required
def onboard():
    result = start_onboarding(current_user)
    db.session.commit()
    return jsonify(result), 200
