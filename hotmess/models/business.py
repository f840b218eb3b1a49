"""Business model.

A venue/promoter account that buys advertising credits. credit_balance is
only ever changed with an SQL-level increment (see settlement_service).
"""

import uuid

from hotmess.extensions import db


class Business(db.Model):
    __tablename__ = "businesses"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    credit_balance = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    owner = db.relationship("User")

    def __repr__(self):
        return f"<Business {self.name} credits={self.credit_balance}>"
