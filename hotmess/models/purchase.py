"""Purchase model.

A buyer's intent to acquire a ticket, product, or credit bundle, linked to
the Stripe Checkout Session created for it.

Happy path:  pending -> paid -> delivered / completed
Failure:     pending -> payment_failed   (terminal)
Abandoned:   pending -> cancelled        (session expired, terminal)
Refund:      paid | delivered | completed -> refunded

Status changes are made with conditional UPDATEs in settlement_service,
never by assigning .status on a loaded row, so a purchase is never paid twice.
"""

import uuid

from hotmess.extensions import db


class Purchase(db.Model):
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint(
            "buyer_id", "idempotency_key", name="uq_purchases_buyer_idempotency_key"
        ),
    )

    # -- Closed enum of purchase types --
    PURCHASE_TYPES = ["ticket", "product", "credits"]

    STATUSES = [
        "pending",
        "paid",
        "delivered",
        "completed",
        "payment_failed",
        "cancelled",
        "refunded",
    ]

    # Statuses that mean "payment already applied" (idempotent skip)
    SETTLED_STATUSES = ("paid", "delivered", "completed")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    purchase_type = db.Column(db.String(20), nullable=False)  # ticket | product | credits
    reference_id = db.Column(
        db.String(36), nullable=False
    )  # listing / product / business id
    buyer_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    buyer_email = db.Column(db.String(255), nullable=False)
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # null for platform-sold items and credits
    quantity = db.Column(db.Integer, nullable=False, default=1)
    amount_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="gbp")
    status = db.Column(
        db.String(50), default="pending", nullable=False
    )
    digital_delivered = db.Column(db.Boolean, default=False, nullable=False)
    stripe_session_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_checkout_url = db.Column(db.Text, nullable=True)
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True, index=True)
    idempotency_key = db.Column(db.String(255), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    escrow_order = db.relationship(
        "EscrowOrder", back_populates="purchase", uselist=False
    )

    def __repr__(self):
        return f"<Purchase {self.purchase_type}:{self.reference_id} ({self.status})>"
