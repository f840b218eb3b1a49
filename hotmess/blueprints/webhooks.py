"""Webhooks blueprint — /stripe/webhooks

Stripe delivers payment, refund and Connect account events here.
"""

import logging

from flask import Blueprint, request, jsonify

from hotmess.services.webhook_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Verify the raw body, then settle the event.

    400 when the signature is missing or wrong (nothing written).
    200 with the settlement `result` (applied, skipped, ignored, not_found).
    500 only for a verified event whose dispatch failed, so Stripe retries.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except Exception as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    success, result = handle_webhook_event(event)
    if not success:
        logger.error(f"Webhook processing failed: {result}")
        return jsonify({"error": "Webhook processing failed"}), 500

    return jsonify({"received": True, "result": result}), 200
