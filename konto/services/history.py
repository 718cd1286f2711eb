"""
Patrimoine History Service

Range queries over persisted snapshots, in net (liabilities included) or
brut (asset side only) form, with baseline alignment for percentage change.
Reads only; nothing here writes or keeps state between calls.
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from konto.db.core import AccountDB, AssetDB
from konto.crud import crud_snapshot
from konto.services.snapshot_engine import TOTAL_CATEGORY

ALL_CATEGORIES = "all"
LIABILITY_CATEGORIES = ("loan",)

RANGE_DAYS: Dict[str, int] = {
    "1m": 30,
    "3m": 90,
    "6m": 180,
    "1y": 365,
    "max": 3650,
}
DEFAULT_RANGE = "6m"


@dataclass(frozen=True)
class HistoryPoint:
    date: date
    value: Decimal


@dataclass
class HistorySeries:
    points: List[HistoryPoint] = field(default_factory=list)
    baseline: Optional[HistoryPoint] = None
    change: Optional[Decimal] = None
    change_percent: Optional[float] = None


def resolve_range(range_key: Optional[str], today: Optional[date] = None) -> Tuple[date, date]:
    """Translate a range key (1m, 3m, 6m, 1y, max) into (start, end). Unknown keys mean 6m."""
    today = today or date.today()
    days_back = RANGE_DAYS.get(range_key or DEFAULT_RANGE, RANGE_DAYS[DEFAULT_RANGE])
    return today - timedelta(days=days_back), today


def get_history(
    db: Session,
    user_id: int,
    category: str = ALL_CATEGORIES,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    net: bool = True
) -> List[HistoryPoint]:
    """
    Ascending (date, value) series for a user.

    For "all", each date sums the per-category rows (never the stored total):
    net keeps loan rows so liabilities reduce the value, brut drops them.
    Any other category returns its own rows.
    """
    if category != ALL_CATEGORIES:
        rows = crud_snapshot.read_snapshots(db, user_id, start_date, end_date, categories=[category])
        return [HistoryPoint(date=row.snapshot_date, value=Decimal(row.total_value)) for row in rows]

    totals: Dict[date, Decimal] = {}
    for row in crud_snapshot.read_snapshots(db, user_id, start_date, end_date):
        if row.category == TOTAL_CATEGORY:
            continue
        if not net and row.category in LIABILITY_CATEGORIES:
            totals.setdefault(row.snapshot_date, Decimal("0"))
            continue
        totals[row.snapshot_date] = totals.get(row.snapshot_date, Decimal("0")) + Decimal(row.total_value)

    return [HistoryPoint(date=day, value=totals[day]) for day in sorted(totals)]


def find_baseline(points: List[HistoryPoint], baseline_date: Optional[date]) -> Optional[HistoryPoint]:
    """
    The earliest point on or after baseline_date, so accounts added mid-range
    do not show up as growth. Falls back to the first point.
    """
    if not points:
        return None
    if baseline_date is not None:
        for point in points:
            if point.date >= baseline_date:
                return point
    return points[0]


def build_series(points: List[HistoryPoint], baseline_date: Optional[date] = None) -> HistorySeries:
    baseline = find_baseline(points, baseline_date)
    if baseline is None:
        return HistorySeries(points=points)

    change = points[-1].value - baseline.value
    change_percent = None
    if baseline.value != 0:
        change_percent = float(change / abs(baseline.value) * 100)

    return HistorySeries(points=points, baseline=baseline, change=change, change_percent=change_percent)


def default_baseline_date(db: Session, user_id: int) -> Optional[date]:
    """Date the most recently added visible account or asset was created"""
    latest_account = db.query(func.max(AccountDB.created_at)).filter(
        AccountDB.user_id == user_id,
        AccountDB.hidden.is_(False)
    ).scalar()
    latest_asset = db.query(func.max(AssetDB.created_at)).filter(
        AssetDB.user_id == user_id
    ).scalar()

    candidates = [value.date() for value in (latest_account, latest_asset) if value is not None]
    return max(candidates) if candidates else None
