"""Sellable catalog models.

- TicketListing: a resale ticket listing. Reserved while a checkout is open,
  sold once payment succeeds.
- Product: marketplace item, physical (shipped, inventory tracked) or
  digital (delivered as soon as payment succeeds).

Both carry a cash price in minor units (what Stripe charges) and an XP
price (what the escrow holds for the seller).
"""

import uuid
from datetime import datetime, timezone

from hotmess.extensions import db


class TicketListing(db.Model):
    __tablename__ = "ticket_listings"

    # -- Valid statuses --
    STATUSES = ["active", "reserved", "sold", "cancelled", "expired"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    event_name = db.Column(db.String(255), nullable=False)
    event_date = db.Column(db.DateTime(timezone=True), nullable=True)
    price_minor = db.Column(db.Integer, nullable=False)  # per ticket, e.g. pence
    price_xp = db.Column(db.Integer, nullable=False, default=0)  # per ticket
    ticket_quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(50), default="active", nullable=False
    )  # active | reserved | sold | cancelled | expired
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User")

    @property
    def event_has_passed(self):
        if self.event_date is None:
            return False
        event_date = self.event_date
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if event_date.tzinfo is None:
            event_date = event_date.replace(tzinfo=timezone.utc)
        return event_date < datetime.now(timezone.utc)

    def __repr__(self):
        return f"<TicketListing {self.event_name} ({self.status})>"


class Product(db.Model):
    __tablename__ = "products"

    STATUSES = ["active", "sold_out", "archived"]
    PRODUCT_TYPES = ["physical", "digital"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # null for platform-sold merch
    name = db.Column(db.String(255), nullable=False)
    product_type = db.Column(
        db.String(20), default="physical", nullable=False
    )  # physical | digital
    price_minor = db.Column(db.Integer, nullable=False)
    shipping_minor = db.Column(db.Integer, nullable=False, default=0)
    price_xp = db.Column(db.Integer, nullable=False, default=0)
    price_sweat = db.Column(db.Integer, nullable=True)  # secondary currency, optional
    inventory_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.String(50), default="active", nullable=False
    )  # active | sold_out | archived
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User")

    @property
    def is_digital(self):
        return self.product_type == "digital"

    def __repr__(self):
        return f"<Product {self.name} ({self.status})>"
