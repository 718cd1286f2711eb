from pydantic import BaseModel
from typing import Optional, List
from datetime import date
from decimal import Decimal


class HistoryDataPoint(BaseModel):
    """A single data point in the patrimoine history"""
    date: date
    value: Decimal


class HistoryResponse(BaseModel):
    """Response model for a history range query"""
    history: List[HistoryDataPoint]
    range: str
    category: str
    net: bool
    baseline_date: Optional[date]
    baseline: Optional[HistoryDataPoint]
    change: Optional[Decimal]
    change_percent: Optional[float]


class SnapshotRunResponse(BaseModel):
    """Response model for a snapshot triggered for the current user"""
    date: date
    categories: dict
    total: Decimal
    unconvertible: int
