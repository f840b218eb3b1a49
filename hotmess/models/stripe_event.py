"""Stripe event model (delivery log).

Every verified webhook delivery is recorded by its Stripe event ID.
Redeliveries bump delivery_count but are still dispatched: idempotency
lives in the settlement applier's conditional updates, not here.
"""

import uuid

from hotmess.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    delivery_count = db.Column(db.Integer, default=1, nullable=False)
    result = db.Column(db.String(50), nullable=True)  # applied | skipped | ignored | not_found
    first_received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    last_received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
