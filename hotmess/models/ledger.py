"""Ledger entry model (append-only).

One row per balance-affecting event. balance_after is the user's stored
balance for that currency immediately after the entry, read back inside the
same transaction as the increment, so summing a user's entries always
reproduces the stored balance.

Rows are never updated: an ORM flush that tries to is refused.
"""

import uuid

from sqlalchemy import event

from hotmess.extensions import db


class LedgerEntry(db.Model):
    __tablename__ = "ledger_entries"

    CURRENCIES = ["xp", "sweat"]

    TRANSACTION_TYPES = [
        "escrow_release",
        "platform_fee",
        "pickup_release",
        "purchase",
        "payout",
        "refund",
        "scan",
        "adjustment",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    currency = db.Column(db.String(10), nullable=False, default="xp")  # xp | sweat
    amount = db.Column(db.Integer, nullable=False)  # signed
    transaction_type = db.Column(db.String(50), nullable=False)
    reference_id = db.Column(db.String(36), nullable=True, index=True)
    reference_type = db.Column(db.String(50), nullable=True)  # e.g. "escrow_order"
    balance_after = db.Column(db.Integer, nullable=False)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid clashing with SQLAlchemy's Model.metadata
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="ledger_entries")

    def __repr__(self):
        return f"<LedgerEntry {self.transaction_type} {self.amount:+d}{self.currency}>"


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise RuntimeError(f"Ledger entries are append-only (entry {target.id})")
