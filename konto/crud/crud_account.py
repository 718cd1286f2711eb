from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from konto.db.core import AccountDB, BankConnectionDB, ConnectionStatus, NotFoundError


# ===== DATABASE OPERATIONS =====

def read_db_account(db: Session, account_id: int, user_id: Optional[int] = None) -> Optional[AccountDB]:
    """Read an account by ID, optionally filtering by user"""
    query = db.query(AccountDB).filter(AccountDB.id == account_id)

    if user_id:
        query = query.filter(AccountDB.user_id == user_id)

    return query.first()


def read_visible_accounts(db: Session, user_id: int) -> List[AccountDB]:
    """All non-hidden accounts for a user"""
    return db.query(AccountDB).filter(
        AccountDB.user_id == user_id,
        AccountDB.hidden.is_(False)
    ).order_by(AccountDB.id).all()


def read_provider_account(db: Session, user_id: int, provider: str, provider_account_id: str) -> Optional[AccountDB]:
    return db.query(AccountDB).filter(
        AccountDB.user_id == user_id,
        AccountDB.provider == provider,
        AccountDB.provider_account_id == provider_account_id
    ).first()


def apply_sync_update(
    account: AccountDB,
    balance: Decimal,
    account_type: str,
    usage: str,
    subtype: Optional[str],
    synced_at: datetime,
    currency: Optional[str] = None
) -> AccountDB:
    """
    Assign every field a provider refresh touches in one place, so a single
    commit publishes balance and classification together.
    """
    account.balance = balance
    account.last_sync = synced_at
    account.type = account_type
    account.usage = usage
    account.subtype = subtype
    if currency:
        account.currency = currency
    return account


def update_account_balance(db: Session, account_id: int, user_id: int, balance: Decimal) -> AccountDB:
    """Manual balance edit. Counts as a sync for staleness purposes."""
    db_account = read_db_account(db, account_id=account_id, user_id=user_id)
    if not db_account:
        raise NotFoundError(f"Account with id {account_id} not found")

    db_account.balance = round(Decimal(balance), 2)
    db_account.last_sync = datetime.utcnow()

    db.commit()
    db.refresh(db_account)
    return db_account


# ===== BANK CONNECTIONS =====

def read_active_connections(db: Session, user_id: int, provider: Optional[str] = None) -> List[BankConnectionDB]:
    query = db.query(BankConnectionDB).filter(
        BankConnectionDB.user_id == user_id,
        BankConnectionDB.status == ConnectionStatus.ACTIVE.value
    )
    if provider:
        query = query.filter(BankConnectionDB.provider == provider)
    return query.order_by(BankConnectionDB.id).all()


def read_active_token(db: Session, user_id: int, provider: Optional[str] = None) -> Optional[str]:
    """Bearer token of the user's first active connection, if any"""
    for connection in read_active_connections(db, user_id, provider):
        if connection.access_token:
            return connection.access_token
    return None


def read_connection(db: Session, connection_id: int, user_id: int) -> Optional[BankConnectionDB]:
    return db.query(BankConnectionDB).filter(
        BankConnectionDB.id == connection_id,
        BankConnectionDB.user_id == user_id
    ).first()
