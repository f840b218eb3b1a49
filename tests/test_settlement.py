"""Tests for settlement_service — applying payment outcomes.

Covers:
- Ticket / physical product / digital product / credits success paths
- Idempotent re-application (no double side effects)
- Failure, session expiry, and refund transitions
- Purchase lookup fallbacks
"""

from hotmess.extensions import db
from hotmess.models.audit import AuditEvent
from hotmess.models.business import Business
from hotmess.models.catalog import Product, TicketListing
from hotmess.models.escrow import EscrowOrder
from hotmess.models.notification import Notification
from hotmess.models.purchase import Purchase
from hotmess.services import settlement_service
from hotmess.services.settlement_service import APPLIED, NOT_FOUND, SKIPPED


def _purchase(seed_data, purchase_type, reference_id, quantity=1,
              status="pending", seller=True, session_id="cs_test_settle"):
    purchase = Purchase(
        purchase_type=purchase_type,
        reference_id=reference_id,
        buyer_id=seed_data["buyer_id"],
        buyer_email=seed_data["buyer_email"],
        seller_id=seed_data["seller_id"] if seller else None,
        quantity=quantity,
        amount_minor=1000,
        currency="gbp",
        status=status,
        stripe_session_id=session_id,
    )
    db.session.add(purchase)
    db.session.commit()
    return purchase.id


def _meta(purchase_id, purchase_type="ticket", reference_id="x"):
    return {
        "purchase_type": purchase_type,
        "reference_id": reference_id,
        "purchase_id": purchase_id,
    }


class TestTicketPaid:

    def test_marks_paid_sells_listing_and_opens_escrow(self, app, seed_data):
        with app.app_context():
            db.session.execute(
                db.update(TicketListing)
                .where(TicketListing.id == seed_data["listing_id"])
                .values(status="reserved")
            )
            db.session.commit()
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"], quantity=2)

            result = settlement_service.apply_payment_succeeded(
                _meta(purchase_id), payment_intent_id="pi_test_1"
            )
            db.session.commit()

            assert result == APPLIED
            purchase = db.session.get(Purchase, purchase_id)
            assert purchase.status == "paid"
            assert purchase.paid_at is not None
            assert purchase.stripe_payment_intent_id == "pi_test_1"

            listing = db.session.get(TicketListing, seed_data["listing_id"])
            assert listing.status == "sold"
            assert listing.sold_at is not None

            order = EscrowOrder.query.filter_by(purchase_id=purchase_id).one()
            assert order.status == "escrow"
            assert order.total_xp == 2000
            assert order.seller_id == seed_data["seller_id"]
            assert order.auto_release_at is not None

            assert AuditEvent.query.filter_by(action="purchase.paid").count() == 1
            assert Notification.query.filter_by(
                user_id=seed_data["seller_id"], type="ticket_sold"
            ).count() == 1

    def test_redelivery_is_a_no_op(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"])

            first = settlement_service.apply_payment_succeeded(_meta(purchase_id))
            db.session.commit()
            second = settlement_service.apply_payment_succeeded(_meta(purchase_id))
            db.session.commit()

            assert first == APPLIED
            assert second == SKIPPED
            assert EscrowOrder.query.filter_by(purchase_id=purchase_id).count() == 1
            assert AuditEvent.query.filter_by(action="purchase.paid").count() == 1
            assert Notification.query.filter_by(type="purchase_confirmed").count() == 1


class TestProductPaid:

    def test_physical_decrements_inventory_and_sells_out(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "product", seed_data["tee_id"], quantity=3)

            settlement_service.apply_payment_succeeded(_meta(purchase_id, "product"))
            db.session.commit()

            tee = db.session.get(Product, seed_data["tee_id"])
            assert tee.inventory_count == 0
            assert tee.status == "sold_out"

            order = EscrowOrder.query.filter_by(purchase_id=purchase_id).one()
            assert order.total_xp == 800 * 3
            assert order.total_sweat == 50 * 3
            assert db.session.get(Purchase, purchase_id).status == "paid"

    def test_inventory_floors_at_zero(self, app, seed_data):
        with app.app_context():
            db.session.execute(
                db.update(Product)
                .where(Product.id == seed_data["tee_id"])
                .values(inventory_count=1)
            )
            db.session.commit()
            purchase_id = _purchase(seed_data, "product", seed_data["tee_id"], quantity=2)

            settlement_service.apply_payment_succeeded(_meta(purchase_id, "product"))
            db.session.commit()

            assert db.session.get(Product, seed_data["tee_id"]).inventory_count == 0

    def test_partial_stock_stays_active(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "product", seed_data["tee_id"], quantity=1)

            settlement_service.apply_payment_succeeded(_meta(purchase_id, "product"))
            db.session.commit()

            tee = db.session.get(Product, seed_data["tee_id"])
            assert tee.inventory_count == 2
            assert tee.status == "active"

    def test_digital_is_delivered_immediately(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "product", seed_data["mix_id"])

            settlement_service.apply_payment_succeeded(_meta(purchase_id, "product"))
            db.session.commit()

            purchase = db.session.get(Purchase, purchase_id)
            assert purchase.status == "delivered"
            assert purchase.digital_delivered is True

            mix = db.session.get(Product, seed_data["mix_id"])
            assert mix.status == "active"
            assert mix.inventory_count == 0

            order = EscrowOrder.query.filter_by(purchase_id=purchase_id).one()
            assert order.total_xp == 200
            assert order.total_sweat is None

    def test_platform_product_opens_no_escrow(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(
                seed_data, "product", seed_data["tee_id"], seller=False
            )

            settlement_service.apply_payment_succeeded(_meta(purchase_id, "product"))
            db.session.commit()

            assert EscrowOrder.query.count() == 0


class TestCreditsPaid:

    def test_credit_balance_incremented_once(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(
                seed_data, "credits", seed_data["business_id"], quantity=500, seller=False
            )

            settlement_service.apply_payment_succeeded(_meta(purchase_id, "credits"))
            db.session.commit()
            settlement_service.apply_payment_succeeded(_meta(purchase_id, "credits"))
            db.session.commit()

            business = db.session.get(Business, seed_data["business_id"])
            assert business.credit_balance == 500
            assert EscrowOrder.query.count() == 0


class TestLookup:

    def test_unknown_purchase_is_not_found(self, app, seed_data):
        with app.app_context():
            result = settlement_service.apply_payment_succeeded(
                _meta("00000000-0000-0000-0000-000000000000")
            )
            assert result == NOT_FOUND

    def test_falls_back_to_session_id(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(
                seed_data, "ticket", seed_data["listing_id"], session_id="cs_test_lookup"
            )

            result = settlement_service.apply_payment_succeeded(
                {}, session_id="cs_test_lookup"
            )
            db.session.commit()

            assert result == APPLIED
            assert db.session.get(Purchase, purchase_id).status == "paid"


class TestFailureAndExpiry:

    def test_payment_failed_releases_reserved_listing(self, app, seed_data):
        with app.app_context():
            db.session.execute(
                db.update(TicketListing)
                .where(TicketListing.id == seed_data["listing_id"])
                .values(status="reserved")
            )
            db.session.commit()
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"])

            result = settlement_service.apply_payment_failed(_meta(purchase_id))
            db.session.commit()

            assert result == APPLIED
            assert db.session.get(Purchase, purchase_id).status == "payment_failed"
            assert db.session.get(TicketListing, seed_data["listing_id"]).status == "active"
            assert EscrowOrder.query.count() == 0

    def test_failure_after_success_is_ignored(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"])
            settlement_service.apply_payment_succeeded(_meta(purchase_id))
            db.session.commit()

            result = settlement_service.apply_payment_failed(_meta(purchase_id))
            db.session.commit()

            assert result == SKIPPED
            assert db.session.get(Purchase, purchase_id).status == "paid"
            assert db.session.get(TicketListing, seed_data["listing_id"]).status == "sold"

    def test_success_after_failure_is_not_applied(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"])
            settlement_service.apply_payment_failed(_meta(purchase_id))
            db.session.commit()

            result = settlement_service.apply_payment_succeeded(_meta(purchase_id))
            db.session.commit()

            assert result == SKIPPED
            assert db.session.get(Purchase, purchase_id).status == "payment_failed"
            assert EscrowOrder.query.count() == 0

    def test_session_expired_cancels_pending(self, app, seed_data):
        with app.app_context():
            db.session.execute(
                db.update(TicketListing)
                .where(TicketListing.id == seed_data["listing_id"])
                .values(status="reserved")
            )
            db.session.commit()
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"])

            result = settlement_service.apply_session_expired(_meta(purchase_id))
            db.session.commit()

            assert result == APPLIED
            assert db.session.get(Purchase, purchase_id).status == "cancelled"
            assert db.session.get(TicketListing, seed_data["listing_id"]).status == "active"


class TestRefunds:

    def test_refund_cancels_held_escrow(self, app, seed_data, escrow_order):
        with app.app_context():
            order = db.session.get(EscrowOrder, escrow_order)

            result = settlement_service.apply_refund(
                {}, payment_intent_id=None, amount_refunded=2500
            )
            assert result == NOT_FOUND

            result = settlement_service.apply_refund({"purchase_id": order.purchase_id})
            db.session.commit()

            assert result == APPLIED
            assert db.session.get(Purchase, order.purchase_id).status == "refunded"
            assert db.session.get(EscrowOrder, escrow_order).status == "refunded"

    def test_refund_after_release_leaves_escrow_completed(self, app, seed_data, escrow_order):
        with app.app_context():
            db.session.execute(
                db.update(EscrowOrder)
                .where(EscrowOrder.id == escrow_order)
                .values(status="completed")
            )
            db.session.commit()
            order = db.session.get(EscrowOrder, escrow_order)

            result = settlement_service.apply_refund({"purchase_id": order.purchase_id})
            db.session.commit()

            assert result == APPLIED
            assert db.session.get(EscrowOrder, escrow_order).status == "completed"

    def test_refund_of_pending_purchase_skipped(self, app, seed_data):
        with app.app_context():
            purchase_id = _purchase(seed_data, "ticket", seed_data["listing_id"])

            result = settlement_service.apply_refund({"purchase_id": purchase_id})

            assert result == SKIPPED
            assert db.session.get(Purchase, purchase_id).status == "pending"
