"""
Stale Account Detection

An account is stale when it has not synced within the allowed window, or when
it has no imported transactions at all. Either condition is enough on its own.
"""
from sqlalchemy.orm import Session
from sqlalchemy import exists, or_
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from konto.db.core import AccountDB, TransactionDB

DEFAULT_MAX_AGE_DAYS = 7

REASON_NEVER_SYNCED = "never_synced"
REASON_OUTDATED = "outdated"
REASON_NO_TRANSACTIONS = "no_transactions"


@dataclass(frozen=True)
class StaleAccount:
    account_id: int
    user_id: int
    last_sync: Optional[datetime]
    reason: str


def is_stale(
    last_sync: Optional[datetime],
    transaction_count: int,
    now: Optional[datetime] = None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS
) -> bool:
    now = now or datetime.utcnow()
    if last_sync is None or last_sync < now - timedelta(days=max_age_days):
        return True
    return transaction_count == 0


def _reason(last_sync: Optional[datetime], cutoff: datetime) -> str:
    if last_sync is None:
        return REASON_NEVER_SYNCED
    if last_sync < cutoff:
        return REASON_OUTDATED
    return REASON_NO_TRANSACTIONS


def find_stale_accounts(
    db: Session,
    provider: Optional[str] = "powens",
    now: Optional[datetime] = None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS
) -> List[StaleAccount]:
    """Read-only query for accounts of the given provider that need a refresh"""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=max_age_days)

    has_transactions = exists().where(TransactionDB.account_id == AccountDB.id)

    query = db.query(AccountDB.id, AccountDB.user_id, AccountDB.last_sync).filter(
        or_(
            AccountDB.last_sync.is_(None),
            AccountDB.last_sync < cutoff,
            ~has_transactions,
        )
    )
    if provider:
        query = query.filter(AccountDB.provider == provider)

    return [
        StaleAccount(
            account_id=row.id,
            user_id=row.user_id,
            last_sync=row.last_sync,
            reason=_reason(row.last_sync, cutoff)
        )
        for row in query.order_by(AccountDB.user_id, AccountDB.id).all()
    ]


def stale_user_ids(stale_accounts: List[StaleAccount]) -> List[int]:
    """Distinct owners of the stale accounts, in first-seen order"""
    seen = []
    for account in stale_accounts:
        if account.user_id not in seen:
            seen.append(account.user_id)
    return seen
