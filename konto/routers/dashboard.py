from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from konto.config import get_settings
from konto.crud import crud_snapshot
from konto.db.core import get_db, NotFoundError
from konto.models import dashboard as dashboard_models
from konto.models import history as history_models
from konto.services import history as history_service
from konto.services import snapshot_engine
from konto.services.currency import CurrencyNormalizer
from konto.services.dashboard import build_dashboard
from konto.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/dashboard",
    tags=["dashboard"],
)

# This is a placeholder for a proper authentication dependency.
# In a real app, this would decode a JWT token to get the current user.
def get_current_user_id() -> int:
    return 1

def get_normalizer(db: Session = Depends(get_db)) -> CurrencyNormalizer:
    return CurrencyNormalizer.from_db(db, default_currency=get_settings().base_currency)

@router.get("", response_model=dashboard_models.DashboardSummary)
def read_dashboard(
    usage: Optional[str] = Query(default=None, pattern="^(personal|professional)$"),
    company_id: Optional[int] = None,
    db: Session = Depends(get_db),
    normalizer: CurrencyNormalizer = Depends(get_normalizer),
    user_id: int = Depends(get_current_user_id)
):
    """
    Current totals by category, split personal/professional.
    """
    try:
        return build_dashboard(
            db, user_id, normalizer,
            usage=usage,
            company_id=company_id,
            max_age_days=get_settings().stale_after_days
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.get("/history", response_model=history_models.HistoryResponse)
def read_history(
    range: str = history_service.DEFAULT_RANGE,
    category: str = history_service.ALL_CATEGORIES,
    net: bool = True,
    baseline_date: Optional[date] = None,
    db: Session = Depends(get_db),
    normalizer: CurrencyNormalizer = Depends(get_normalizer),
    user_id: int = Depends(get_current_user_id)
):
    """
    Snapshot series over a range (1m, 3m, 6m, 1y, max) with baseline-aligned change.
    Today's snapshot is taken first if it does not exist yet.
    """
    start_date, end_date = history_service.resolve_range(range)

    if not crud_snapshot.has_snapshot_for_date(db, user_id, end_date):
        try:
            snapshot_engine.create_snapshot_for_user_id(db, user_id, end_date, normalizer)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except Exception as e:
            db.rollback()
            logger.error(f"Could not take today's snapshot for user {user_id}: {e}")

    points = history_service.get_history(db, user_id, category, start_date, end_date, net=net)
    if baseline_date is None:
        baseline_date = history_service.default_baseline_date(db, user_id)
    series = history_service.build_series(points, baseline_date)

    return history_models.HistoryResponse(
        history=[history_models.HistoryDataPoint(date=point.date, value=point.value) for point in series.points],
        range=range if range in history_service.RANGE_DAYS else history_service.DEFAULT_RANGE,
        category=category,
        net=net,
        baseline_date=baseline_date,
        baseline=(
            history_models.HistoryDataPoint(date=series.baseline.date, value=series.baseline.value)
            if series.baseline else None
        ),
        change=series.change,
        change_percent=series.change_percent
    )

@router.post("/snapshot", response_model=history_models.SnapshotRunResponse)
def take_snapshot(
    snapshot_date: Optional[date] = None,
    db: Session = Depends(get_db),
    normalizer: CurrencyNormalizer = Depends(get_normalizer),
    user_id: int = Depends(get_current_user_id)
):
    """
    Take (or replace) the current user's snapshot for a day, today by default.
    """
    try:
        snapshot = snapshot_engine.create_snapshot_for_user_id(db, user_id, snapshot_date, normalizer)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return history_models.SnapshotRunResponse(
        date=snapshot.snapshot_date,
        categories=snapshot.categories,
        total=snapshot.total,
        unconvertible=len(snapshot.unconvertible)
    )
