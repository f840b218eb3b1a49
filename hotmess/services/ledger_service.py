"""Ledger service — balance mutations and their audit trail.

Responsible for:
- Posting a ledger entry together with the balance change it records
- Resolving (or lazily creating) the platform fee account
- Reconciling stored balances against ledger sums

Every balance change is an SQL-level increment followed by a read-back in
the same transaction; there is no application-side read-modify-write.

Functions flush but do NOT commit; the caller commits.
"""

import logging

from flask import current_app
from sqlalchemy import func, select, update

from hotmess.errors import NotFoundError, ValidationError
from hotmess.extensions import db
from hotmess.models.ledger import LedgerEntry
from hotmess.models.user import User

logger = logging.getLogger(__name__)

# currency -> users column holding that balance
BALANCE_FIELDS = {
    "xp": "xp_balance",
    "sweat": "sweat_balance",
}


def _balance_column(currency):
    field = BALANCE_FIELDS.get(currency)
    if field is None:
        raise ValidationError(f"Unknown ledger currency '{currency}'.")
    return getattr(User, field)


def post_entry(user_id, amount, transaction_type, currency="xp",
               reference_id=None, reference_type=None, metadata=None):
    """Apply a signed balance change and append the matching LedgerEntry.

    Args:
        user_id: User UUID string whose balance changes.
        amount: Signed integer amount.
        transaction_type: One of LedgerEntry.TRANSACTION_TYPES.
        currency: "xp" or "sweat".
        reference_id: Id of the record that caused the change (e.g. order id).
        reference_type: Kind of that record (e.g. "escrow_order").
        metadata: Extra JSON context.

    Returns:
        The created LedgerEntry, carrying balance_after.

    Raises:
        NotFoundError: If the user does not exist.
        ValidationError: If currency or transaction type is unknown.
    """
    if transaction_type not in LedgerEntry.TRANSACTION_TYPES:
        raise ValidationError(f"Unknown ledger transaction type '{transaction_type}'.")

    column = _balance_column(currency)

    result = db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values({column.key: column + amount})
    )
    if result.rowcount == 0:
        raise NotFoundError(f"User {user_id} not found.")

    balance_after = db.session.execute(
        select(column).where(User.id == user_id)
    ).scalar_one()

    entry = LedgerEntry(
        user_id=user_id,
        currency=currency,
        amount=amount,
        transaction_type=transaction_type,
        reference_id=reference_id,
        reference_type=reference_type,
        balance_after=balance_after,
        metadata_=metadata or {},
    )
    db.session.add(entry)
    db.session.flush()

    logger.info(
        f"Ledger {transaction_type}: {amount:+d} {currency} for user {user_id} "
        f"(balance {balance_after}, ref {reference_type}:{reference_id})"
    )
    return entry


def get_or_create_platform_account():
    """Return the User row that receives platform fees.

    Created on first use from PLATFORM_ACCOUNT_EMAIL.
    """
    email = current_app.config["PLATFORM_ACCOUNT_EMAIL"]
    account = User.query.filter_by(email=email).first()
    if account:
        return account

    account = User(email=email, full_name="HOTMESS Platform", is_admin=True)
    db.session.add(account)
    db.session.flush()
    logger.info(f"Created platform fee account {email}")
    return account


def ledger_balance(user_id, currency="xp"):
    """Sum of all ledger entries for a user in one currency."""
    total = db.session.execute(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0))
        .where(LedgerEntry.user_id == user_id, LedgerEntry.currency == currency)
    ).scalar_one()
    return int(total)


def find_drift():
    """Find users whose stored balance differs from their ledger sum.

    Returns a list of dicts: user_id, email, currency, stored, ledger.
    """
    sums = db.session.execute(
        select(
            LedgerEntry.user_id,
            LedgerEntry.currency,
            func.sum(LedgerEntry.amount),
        ).group_by(LedgerEntry.user_id, LedgerEntry.currency)
    ).all()
    ledger_sums = {(user_id, currency): int(total) for user_id, currency, total in sums}

    drift = []
    for user in User.query.order_by(User.email).all():
        for currency, field in BALANCE_FIELDS.items():
            stored = getattr(user, field) or 0
            ledger = ledger_sums.get((user.id, currency), 0)
            if stored != ledger:
                drift.append({
                    "user_id": user.id,
                    "email": user.email,
                    "currency": currency,
                    "stored": stored,
                    "ledger": ledger,
                })
    return drift
