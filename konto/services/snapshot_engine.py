"""
Patrimoine Snapshot Service

Captures one total per category per user per day for historical net worth
tracking. Runs are re-runnable for the same day: each (date, user, category)
key is replaced, never duplicated.
"""
from sqlalchemy.orm import Session
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from konto.db.core import UserDB, NotFoundError
from konto.crud import crud_account, crud_asset, crud_snapshot
from konto.services.currency import CurrencyNormalizer, UnconvertibleAmount
from konto.logging_config import get_logger

logger = get_logger(__name__)

CATEGORIES = ("checking", "savings", "investment", "loan", "real_estate", "vehicle", "valuable", "other")
TOTAL_CATEGORY = "total"


@dataclass
class UserSnapshot:
    user_id: int
    snapshot_date: date
    categories: Dict[str, Decimal]
    total: Decimal
    snapshots_written: int
    unconvertible: List[UnconvertibleAmount] = field(default_factory=list)


@dataclass
class SnapshotRunResult:
    snapshot_date: date
    snapshots_created: int = 0
    users_processed: int = 0
    users_failed: int = 0
    unconvertible_amounts: int = 0

    def summary(self) -> str:
        return (
            f"{self.snapshots_created} snapshots created for {self.users_processed} users, "
            f"{self.users_failed} errors"
        )


def _bucket(category: Optional[str], default: str) -> str:
    category = category or default
    return category if category in CATEGORIES else "other"


def aggregate_user_categories(
    db: Session,
    user: UserDB,
    normalizer: CurrencyNormalizer
) -> tuple:
    """
    Sum a user's visible account balances and asset values into the fixed
    category set, in the user's display currency.
    Returns (categories, unconvertible).
    """
    items: Dict[str, List[Tuple[Decimal, Optional[str], str]]] = {category: [] for category in CATEGORIES}

    for account in crud_account.read_visible_accounts(db, user.id):
        items[_bucket(account.type, "checking")].append(
            (Decimal(account.balance or 0), account.currency, f"account:{account.id}")
        )

    for asset in crud_asset.read_user_assets(db, user.id):
        items[_bucket(asset.type, "other")].append(
            (crud_asset.asset_value(asset), asset.currency, f"asset:{asset.id}")
        )

    categories: Dict[str, Decimal] = {}
    unconvertible: List[UnconvertibleAmount] = []
    for category, category_items in items.items():
        converted = normalizer.sum_to_display(category_items, user.display_currency)
        categories[category] = converted.total
        unconvertible.extend(converted.unconvertible)

    return categories, unconvertible


def create_user_snapshot(
    db: Session,
    user: UserDB,
    snapshot_date: date,
    normalizer: CurrencyNormalizer
) -> UserSnapshot:
    """
    Upsert every non-zero category plus the total for one user and commit.
    The total is always written, including zero. Rows left from an earlier
    run the same day for categories now at zero are removed.
    """
    categories, unconvertible = aggregate_user_categories(db, user, normalizer)

    total = Decimal("0")
    written = []
    for category, value in categories.items():
        if value != 0:
            crud_snapshot.upsert_snapshot(db, snapshot_date, user.id, category, value)
            total += value
            written.append(category)

    crud_snapshot.upsert_snapshot(db, snapshot_date, user.id, TOTAL_CATEGORY, total)
    written.append(TOTAL_CATEGORY)

    removed = crud_snapshot.delete_unwritten_categories(db, snapshot_date, user.id, written)
    if removed:
        logger.info(f"User {user.id}: removed {removed} stale category rows for {snapshot_date}")

    db.commit()

    return UserSnapshot(
        user_id=user.id,
        snapshot_date=snapshot_date,
        categories={category: value for category, value in categories.items() if value != 0},
        total=total,
        snapshots_written=len(written),
        unconvertible=unconvertible
    )


def create_snapshot_for_user_id(
    db: Session,
    user_id: int,
    snapshot_date: Optional[date] = None,
    normalizer: Optional[CurrencyNormalizer] = None
) -> UserSnapshot:
    user = db.query(UserDB).filter(UserDB.id == user_id).first()
    if not user:
        raise NotFoundError(f"User with id {user_id} not found")
    return create_user_snapshot(
        db,
        user,
        snapshot_date or date.today(),
        normalizer or CurrencyNormalizer.from_db(db)
    )


def run_daily_snapshots(
    db: Session,
    snapshot_date: Optional[date] = None,
    normalizer: Optional[CurrencyNormalizer] = None,
    user_id: Optional[int] = None,
    should_stop: Optional[Callable[[], bool]] = None
) -> SnapshotRunResult:
    """
    Snapshot every user (or one user). A failure for one user is rolled back,
    logged and counted; the remaining users are still processed.
    """
    snapshot_date = snapshot_date or date.today()
    result = SnapshotRunResult(snapshot_date=snapshot_date)

    # Failures up to here (no database, bad rate table) abort the run
    if normalizer is None:
        normalizer = CurrencyNormalizer.from_db(db)
    query = db.query(UserDB)
    if user_id is not None:
        query = query.filter(UserDB.id == user_id)
    user_ids = [row.id for row in query.order_by(UserDB.id).with_entities(UserDB.id).all()]

    logger.info(f"Running daily snapshots for {snapshot_date}: {len(user_ids)} user(s)")

    for current_user_id in user_ids:
        if should_stop and should_stop():
            logger.warning(f"Snapshot run stopped before user {current_user_id}")
            break

        result.users_processed += 1
        try:
            user = db.get(UserDB, current_user_id)
            snapshot = create_user_snapshot(db, user, snapshot_date, normalizer)
        except Exception as e:
            db.rollback()
            result.users_failed += 1
            logger.error(f"Snapshot creation failed for user {current_user_id}: {e}")
            continue

        result.snapshots_created += snapshot.snapshots_written
        result.unconvertible_amounts += len(snapshot.unconvertible)
        logger.info(
            f"Created {snapshot.snapshots_written} snapshots for user {current_user_id} "
            f"(total: {snapshot.total:.2f} {user.display_currency})"
        )

    logger.info(f"Daily snapshot job complete: {result.summary()}")
    return result
