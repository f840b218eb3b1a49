"""Stripe Connect account model.

Links a seller to their Stripe Express account. At most one per seller,
created lazily the first time the seller asks for an onboarding link.
onboarding_status is synced from account.updated webhooks.
"""

import uuid

from hotmess.extensions import db


class StripeConnectAccount(db.Model):
    __tablename__ = "stripe_connect_accounts"

    STATUSES = ["pending", "active", "restricted"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id"),
        unique=True,
        nullable=False,
    )
    stripe_account_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "acct_1Abc..."
    onboarding_status = db.Column(
        db.String(50), default="pending", nullable=False
    )  # pending | active | restricted
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User", back_populates="connect_account")

    def __repr__(self):
        return f"<StripeConnectAccount {self.stripe_account_id} ({self.onboarding_status})>"
