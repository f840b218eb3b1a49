"""Connect service — seller payout accounts on Stripe Connect.

Responsible for:
- Creating a seller's Express account on first onboarding request
- Issuing AccountLink onboarding URLs
- Syncing onboarding_status from account.updated webhooks

Functions flush but do NOT commit; the caller commits.
"""

import logging

import stripe
from flask import current_app

from hotmess.errors import UpstreamError
from hotmess.extensions import db
from hotmess.models.connect_account import StripeConnectAccount
from hotmess.services.activity_service import log_settlement_audit
from hotmess.services.checkout_service import configure_stripe

logger = logging.getLogger(__name__)


def derive_onboarding_status(account):
    """Map a Stripe account object to pending | active | restricted."""
    if account.get("charges_enabled") and account.get("payouts_enabled"):
        return "active"
    requirements = account.get("requirements") or {}
    if requirements.get("disabled_reason"):
        return "restricted"
    return "pending"


def start_onboarding(seller):
    """Return a Stripe onboarding URL for the seller.

    The Express account is created on the first call and reused after that,
    so a seller who abandons onboarding picks up where they left off.

    Returns dict: url, stripe_account_id, onboarding_status.
    """
    configure_stripe()

    connect_account = StripeConnectAccount.query.filter_by(seller_id=seller.id).first()

    try:
        if connect_account is None:
            account = stripe.Account.create(
                type="express",
                email=seller.email,
                capabilities={"transfers": {"requested": True}},
                metadata={"seller_id": seller.id},
            )
            connect_account = StripeConnectAccount(
                seller_id=seller.id,
                stripe_account_id=account.id,
                onboarding_status="pending",
            )
            db.session.add(connect_account)
            db.session.flush()

            log_settlement_audit("connect.account_created", {
                "stripe_account_id": account.id,
            }, actor_user_id=seller.id)
            logger.info(f"Created Connect account {account.id} for seller {seller.id}")

        link = stripe.AccountLink.create(
            account=connect_account.stripe_account_id,
            refresh_url=current_app.config["STRIPE_CONNECT_REFRESH_URL"],
            return_url=current_app.config["STRIPE_CONNECT_RETURN_URL"],
            type="account_onboarding",
        )
    except stripe.error.StripeError as e:
        logger.error(f"Stripe Connect onboarding failed for seller {seller.id}: {e}")
        raise UpstreamError(
            "Could not start payout onboarding. Please try again.",
            code="payment_provider_error",
        )

    return {
        "url": link.url,
        "stripe_account_id": connect_account.stripe_account_id,
        "onboarding_status": connect_account.onboarding_status,
    }


def sync_account(account):
    """Apply an account.updated payload to the local Connect record.

    Returns True if a local record was found (changed or not).
    """
    connect_account = StripeConnectAccount.query.filter_by(
        stripe_account_id=account["id"]
    ).first()
    if connect_account is None:
        logger.warning(f"account.updated for unknown Connect account {account['id']}")
        return False

    status = derive_onboarding_status(account)
    if status != connect_account.onboarding_status:
        log_settlement_audit("connect.status_changed", {
            "stripe_account_id": connect_account.stripe_account_id,
            "from": connect_account.onboarding_status,
            "to": status,
        }, actor_user_id=None)
        logger.info(
            f"Connect account {connect_account.stripe_account_id}: "
            f"{connect_account.onboarding_status} -> {status}"
        )
        connect_account.onboarding_status = status
        db.session.flush()
    return True
