from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from konto.db.core import SnapshotDB

CENTS = Decimal("0.01")


def upsert_snapshot(db: Session, snapshot_date: date, user_id: int, category: str, value: Decimal) -> SnapshotDB:
    """
    Write the value for (date, user, category), replacing any existing row.

    The write happens inside a SAVEPOINT: if a concurrent run inserted the same
    key between our check and our insert, the unique constraint fires and we
    fall back to updating the row that won. The caller commits.
    """
    value = Decimal(value).quantize(CENTS)

    existing = _read_snapshot(db, snapshot_date, user_id, category)
    if existing:
        existing.total_value = value
        existing.updated_at = datetime.utcnow()
        db.flush()
        return existing

    snapshot = SnapshotDB(
        snapshot_date=snapshot_date,
        user_id=user_id,
        category=category,
        total_value=value
    )
    try:
        with db.begin_nested():
            db.add(snapshot)
    except IntegrityError:
        existing = _read_snapshot(db, snapshot_date, user_id, category)
        if existing is None:
            raise
        existing.total_value = value
        existing.updated_at = datetime.utcnow()
        db.flush()
        return existing
    return snapshot


def delete_unwritten_categories(db: Session, snapshot_date: date, user_id: int, written: List[str]) -> int:
    """
    Drop the day's rows for categories not in `written`, so a same-day re-run
    leaves exactly the categories of the latest run. The caller commits.
    """
    deleted = db.query(SnapshotDB).filter(
        SnapshotDB.snapshot_date == snapshot_date,
        SnapshotDB.user_id == user_id,
        SnapshotDB.category.notin_(written)
    ).delete(synchronize_session=False)
    db.flush()
    return deleted


def _read_snapshot(db: Session, snapshot_date: date, user_id: int, category: str) -> Optional[SnapshotDB]:
    return db.query(SnapshotDB).filter(
        SnapshotDB.snapshot_date == snapshot_date,
        SnapshotDB.user_id == user_id,
        SnapshotDB.category == category
    ).first()


def read_snapshots(
    db: Session,
    user_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    categories: Optional[List[str]] = None
) -> List[SnapshotDB]:
    """Snapshots for a user ordered by date, optionally bounded and filtered by category"""
    query = db.query(SnapshotDB).filter(SnapshotDB.user_id == user_id)

    if start_date:
        query = query.filter(SnapshotDB.snapshot_date >= start_date)
    if end_date:
        query = query.filter(SnapshotDB.snapshot_date <= end_date)
    if categories:
        query = query.filter(SnapshotDB.category.in_(categories))

    return query.order_by(SnapshotDB.snapshot_date, SnapshotDB.category).all()


def has_snapshot_for_date(db: Session, user_id: int, snapshot_date: date) -> bool:
    return db.query(SnapshotDB.id).filter(
        SnapshotDB.user_id == user_id,
        SnapshotDB.snapshot_date == snapshot_date
    ).first() is not None
