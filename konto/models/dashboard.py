from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from decimal import Decimal


class DashboardAccount(BaseModel):
    id: int
    name: str
    type: str
    usage: str
    balance: Decimal
    currency: str
    display_balance: Optional[Decimal]
    stale: bool
    last_sync_age_days: Optional[int]


class DashboardAsset(BaseModel):
    id: int
    type: str
    name: str
    current_value: Decimal
    loan_balance: Optional[Decimal]
    net_value: Optional[Decimal]
    monthly_costs: Decimal
    monthly_revenues: Decimal


class FinancialSummary(BaseModel):
    brut_balance: Decimal
    loan_total: Decimal
    net_balance: Decimal
    accounts_by_type: Dict[str, List[DashboardAccount]]


class PatrimoineSummary(BaseModel):
    brut_value: Decimal
    net_value: Decimal
    count: int
    assets: List[DashboardAsset]


class Totals(BaseModel):
    brut: Decimal
    net: Decimal


class Distribution(BaseModel):
    personal: Decimal
    professional: Decimal


class DashboardSummary(BaseModel):
    """Current totals by category for the dashboard view"""
    display_currency: str
    financial: FinancialSummary
    patrimoine: PatrimoineSummary
    totals: Totals
    distribution: Distribution
    account_count: int
    company_count: int
    unconvertible_account_ids: List[int] = Field(default_factory=list)
