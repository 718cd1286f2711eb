from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from typing import Optional
from datetime import date
from decimal import Decimal
import hashlib

from konto.db.core import TransactionDB
from konto.logging_config import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")


# ===== UTILITY FUNCTIONS =====

def generate_transaction_hash(account_id: int, transaction_date: date, amount: Decimal, label: Optional[str]) -> str:
    """Hash of the natural key (account, date, amount, label) used for deduplication."""
    hash_string = (
        f"{account_id}|"
        f"{transaction_date.isoformat()}|"
        f"{Decimal(amount).quantize(CENTS)}|"
        f"{label or ''}"
    )
    return hashlib.sha256(hash_string.encode()).hexdigest()


# ===== DATABASE OPERATIONS =====

def insert_if_absent(
    db: Session,
    account_id: int,
    transaction_date: date,
    amount: Decimal,
    label: Optional[str],
    category: Optional[str] = None,
    is_pro: bool = False
) -> bool:
    """
    Insert a transaction unless one with the same natural key already exists.
    Returns True when a row was created. Duplicates are silently skipped.
    The caller commits.
    """
    amount = Decimal(amount).quantize(CENTS)
    transaction_hash = generate_transaction_hash(account_id, transaction_date, amount, label)

    if _find_by_hash(db, account_id, transaction_hash) is not None:
        return False

    transaction = TransactionDB(
        account_id=account_id,
        transaction_hash=transaction_hash,
        transaction_date=transaction_date,
        amount=amount,
        label=label,
        category=category,
        is_pro=is_pro
    )
    try:
        with db.begin_nested():
            db.add(transaction)
    except IntegrityError:
        # inserted by a concurrent writer after the check
        logger.debug(f"Duplicate transaction skipped for account {account_id}: {transaction_date} {amount} {label}")
        return False
    return True


def _find_by_hash(db: Session, account_id: int, transaction_hash: str) -> Optional[int]:
    row = db.query(TransactionDB.id).filter(
        TransactionDB.account_id == account_id,
        TransactionDB.transaction_hash == transaction_hash
    ).first()
    return row.id if row else None


def count_account_transactions(db: Session, account_id: int) -> int:
    return db.query(func.count(TransactionDB.id)).filter(
        TransactionDB.account_id == account_id
    ).scalar() or 0
