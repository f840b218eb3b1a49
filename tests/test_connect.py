"""Tests for Stripe Connect onboarding.

Covers:
- Lazy Express account creation (at most one per seller)
- AccountLink URL returned
- Stripe failures fail closed
- Onboarding status derivation
"""

from unittest.mock import patch

import stripe

from hotmess.extensions import db
from hotmess.models.connect_account import StripeConnectAccount
from hotmess.services.connect_service import derive_onboarding_status

ACCOUNT_CREATE = "hotmess.services.connect_service.stripe.Account.create"
LINK_CREATE = "hotmess.services.connect_service.stripe.AccountLink.create"


def _account(account_id="acct_test_new"):
    return stripe.Account.construct_from({"id": account_id}, "sk_test_fake")


def _link(url="https://connect.stripe.com/setup/e/acct_test_new/abc"):
    return stripe.AccountLink.construct_from({"url": url}, "sk_test_fake")


class TestOnboarding:

    @patch(LINK_CREATE)
    @patch(ACCOUNT_CREATE)
    def test_creates_account_once(self, mock_account, mock_link, client, app, seed_data):
        mock_account.return_value = _account()
        mock_link.return_value = _link()

        first = client.post("/api/connect/onboard", headers=seed_data["seller_headers"])
        second = client.post("/api/connect/onboard", headers=seed_data["seller_headers"])

        assert first.status_code == 200
        assert second.status_code == 200
        body = first.get_json()
        assert body["url"].startswith("https://connect.stripe.com/")
        assert body["stripe_account_id"] == "acct_test_new"
        assert body["onboarding_status"] == "pending"

        assert mock_account.call_count == 1
        assert mock_account.call_args.kwargs["type"] == "express"
        assert mock_link.call_count == 2
        assert mock_link.call_args.kwargs["account"] == "acct_test_new"
        assert mock_link.call_args.kwargs["return_url"] == app.config["STRIPE_CONNECT_RETURN_URL"]

        with app.app_context():
            assert StripeConnectAccount.query.filter_by(
                seller_id=seed_data["seller_id"]
            ).count() == 1

    @patch(ACCOUNT_CREATE)
    def test_stripe_failure_returns_500(self, mock_account, client, app, seed_data):
        mock_account.side_effect = stripe.error.APIConnectionError("Stripe is down")

        resp = client.post("/api/connect/onboard", headers=seed_data["seller_headers"])

        assert resp.status_code == 500
        assert resp.get_json()["error"] == "payment_provider_error"
        with app.app_context():
            assert db.session.query(StripeConnectAccount).count() == 0

    def test_requires_authentication(self, client, seed_data):
        resp = client.post("/api/connect/onboard")
        assert resp.status_code == 401


class TestOnboardingStatus:

    def test_active_when_charges_and_payouts_enabled(self):
        assert derive_onboarding_status({
            "charges_enabled": True, "payouts_enabled": True,
        }) == "active"

    def test_restricted_when_disabled(self):
        assert derive_onboarding_status({
            "charges_enabled": True,
            "payouts_enabled": False,
            "requirements": {"disabled_reason": "requirements.past_due"},
        }) == "restricted"

    def test_pending_otherwise(self):
        assert derive_onboarding_status({"charges_enabled": False}) == "pending"
