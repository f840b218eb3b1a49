"""User model.

Stores identity, the API token digest used for bearer auth, and the two
platform balances (XP and Sweat). Balances change only through
ledger_service.post_entry(), which writes a LedgerEntry in the same
transaction.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from hotmess.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(255))
    api_token_hash = db.Column(
        db.String(64), unique=True, nullable=True
    )  # sha256 hex of the bearer token
    is_admin = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    xp_balance = db.Column(db.Integer, default=0, nullable=False)
    sweat_balance = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    ledger_entries = db.relationship(
        "LedgerEntry", back_populates="user", lazy="dynamic"
    )
    connect_account = db.relationship(
        "StripeConnectAccount", back_populates="seller", uselist=False
    )
    notifications = db.relationship(
        "Notification", back_populates="user", lazy="dynamic"
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    def __repr__(self):
        return f"<User {self.email}>"
