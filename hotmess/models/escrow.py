"""Escrow models.

- EscrowOrder: XP held for a seller after a ticket/product purchase is paid,
  until the buyer releases it (manually or by QR pickup) or it auto-releases.
- Dispute: opened by the dispute desk (outside this service). Only its status
  is read here, as a gate on release.

Invariants (enforced in escrow_service):
- released at most once (conditional UPDATE on status='escrow')
- platform_fee_xp + seller_received_xp == total_xp
- no release while any dispute is open or investigating
"""

import uuid
from datetime import datetime, timezone

from hotmess.extensions import db


class EscrowOrder(db.Model):
    __tablename__ = "escrow_orders"
    __table_args__ = (
        db.CheckConstraint("total_xp >= 0", name="ck_escrow_orders_total_xp_non_negative"),
    )

    STATUSES = ["escrow", "completed", "disputed", "cancelled", "refunded"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    purchase_id = db.Column(
        db.String(36), db.ForeignKey("purchases.id"), unique=True, nullable=False
    )
    buyer_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    buyer_email = db.Column(db.String(255), nullable=False)
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    total_xp = db.Column(db.Integer, nullable=False)
    total_sweat = db.Column(db.Integer, nullable=True)  # secondary currency, optional
    status = db.Column(
        db.String(50), default="escrow", nullable=False, index=True
    )  # escrow | completed | disputed | cancelled | refunded
    auto_release_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_by = db.Column(
        db.String(255), nullable=True
    )  # buyer email, or "system" for auto-release
    platform_fee_xp = db.Column(db.Integer, nullable=True)
    seller_received_xp = db.Column(db.Integer, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    purchase = db.relationship("Purchase", back_populates="escrow_order")
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    disputes = db.relationship(
        "Dispute", back_populates="order", lazy="dynamic"
    )
    pickup_beacons = db.relationship(
        "PickupBeacon", back_populates="order", lazy="dynamic"
    )

    def __repr__(self):
        return f"<EscrowOrder {self.id} {self.total_xp}xp ({self.status})>"


class Dispute(db.Model):
    __tablename__ = "disputes"

    STATUSES = ["open", "investigating", "resolved_buyer", "resolved_seller", "closed"]

    # -- Statuses that block escrow release --
    ACTIVE_STATUSES = ("open", "investigating")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("escrow_orders.id"), nullable=False, index=True
    )
    opened_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), default="open", nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    order = db.relationship("EscrowOrder", back_populates="disputes")

    def __repr__(self):
        return f"<Dispute {self.order_id} ({self.status})>"


class PickupBeacon(db.Model):
    """QR pickup point for a physical handover.

    The buyer scans qr_code on site; the scan must come from within
    PICKUP_RADIUS_METERS of (lat, lng) and before expires_at.
    """

    __tablename__ = "pickup_beacons"

    STATUSES = ["active", "picked_up", "expired"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("escrow_orders.id"), nullable=False
    )
    qr_code = db.Column(db.String(255), unique=True, nullable=False)
    lat = db.Column(db.Float, nullable=False)
    lng = db.Column(db.Float, nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(
        db.String(50), default="active", nullable=False
    )  # active | picked_up | expired
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    photo_url = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    order = db.relationship("EscrowOrder", back_populates="pickup_beacons")

    def is_expired(self, now=None):
        """True once expires_at has passed (beacons without expiry never expire)."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now > expires

    def __repr__(self):
        return f"<PickupBeacon {self.qr_code} ({self.status})>"
