"""Shared test fixtures for the HOTMESS settlement test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: buyer, seller, outsider, platform account, a ticket listing,
  a physical and a digital product, and a business owned by the buyer
- escrow_order: a paid ticket purchase holding 1000 XP in escrow
"""

import secrets
from datetime import datetime, timedelta, timezone

import pytest

from hotmess import create_app
from hotmess.extensions import db as _db, hash_api_token
from hotmess.models.business import Business
from hotmess.models.catalog import Product, TicketListing
from hotmess.models.escrow import EscrowOrder
from hotmess.models.purchase import Purchase
from hotmess.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after.

    No app context stays pushed while the test runs, so every request
    through the test client gets its own context (and its own login state).
    """
    with app.app_context():
        _db.create_all()
    yield _db
    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def _make_user(email, full_name):
    token = secrets.token_urlsafe(32)
    user = User(
        email=email,
        full_name=full_name,
        api_token_hash=hash_api_token(token),
    )
    _db.session.add(user)
    _db.session.flush()
    return user, token


@pytest.fixture
def seed_data(app, db_session):
    """Seed users, catalog items, and a business.

    Returns a dict of plain ids / tokens so tests can use them across
    app contexts.
    """
    with app.app_context():
        buyer, buyer_token = _make_user("buyer@hotmess.test", "Bea Buyer")
        seller, seller_token = _make_user("seller@hotmess.test", "Sam Seller")
        outsider, outsider_token = _make_user("outsider@hotmess.test", "Olly Outsider")

        platform = User(
            email=app.config["PLATFORM_ACCOUNT_EMAIL"],
            full_name="HOTMESS Platform",
            is_admin=True,
        )
        _db.session.add(platform)

        listing = TicketListing(
            seller_id=seller.id,
            event_name="Warehouse Night",
            event_date=datetime.now(timezone.utc) + timedelta(days=7),
            price_minor=2500,
            price_xp=1000,
            ticket_quantity=2,
        )
        tee = Product(
            seller_id=seller.id,
            name="HOTMESS Tee",
            product_type="physical",
            price_minor=3000,
            shipping_minor=450,
            price_xp=800,
            price_sweat=50,
            inventory_count=3,
        )
        mix = Product(
            seller_id=seller.id,
            name="Warehouse Night Mix",
            product_type="digital",
            price_minor=500,
            price_xp=200,
            inventory_count=0,
        )
        business = Business(name="The Bar", owner_id=buyer.id)
        _db.session.add_all([listing, tee, mix, business])
        _db.session.commit()

        return {
            "buyer_id": buyer.id,
            "buyer_email": buyer.email,
            "buyer_headers": {"Authorization": f"Bearer {buyer_token}"},
            "seller_id": seller.id,
            "seller_headers": {"Authorization": f"Bearer {seller_token}"},
            "outsider_id": outsider.id,
            "outsider_headers": {"Authorization": f"Bearer {outsider_token}"},
            "platform_id": platform.id,
            "listing_id": listing.id,
            "tee_id": tee.id,
            "mix_id": mix.id,
            "business_id": business.id,
        }


@pytest.fixture
def escrow_order(app, seed_data):
    """A paid ticket purchase with 1000 XP held in escrow.

    Returns the EscrowOrder id.
    """
    with app.app_context():
        purchase = Purchase(
            purchase_type="ticket",
            reference_id=seed_data["listing_id"],
            buyer_id=seed_data["buyer_id"],
            buyer_email=seed_data["buyer_email"],
            seller_id=seed_data["seller_id"],
            quantity=1,
            amount_minor=2500,
            currency="gbp",
            status="paid",
            stripe_session_id="cs_test_escrow",
            paid_at=datetime.now(timezone.utc),
        )
        _db.session.add(purchase)
        _db.session.flush()

        order = EscrowOrder(
            purchase_id=purchase.id,
            buyer_id=seed_data["buyer_id"],
            buyer_email=seed_data["buyer_email"],
            seller_id=seed_data["seller_id"],
            total_xp=1000,
            status="escrow",
            auto_release_at=datetime.now(timezone.utc) + timedelta(hours=48),
        )
        _db.session.add(order)
        _db.session.commit()
        return order.id
