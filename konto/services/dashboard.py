"""
Dashboard Service

Current totals for one user: accounts grouped by type, assets with their
monthly cash flow, brut/net totals and the personal/professional split.
Stale accounts keep their last-known balance and carry a stale flag.
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from konto.db.core import AccountDB, CompanyDB, TransactionDB, UserDB, NotFoundError
from konto.crud import crud_account, crud_asset
from konto.models.dashboard import (
    DashboardAccount, DashboardAsset, DashboardSummary, Distribution,
    FinancialSummary, PatrimoineSummary, Totals
)
from konto.services.currency import CurrencyNormalizer
from konto.services.staleness import DEFAULT_MAX_AGE_DAYS, is_stale
from konto.logging_config import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")
BRUT_ACCOUNT_TYPES = ("checking", "savings", "investment")
LOAN_TYPE = "loan"


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS)


def _transaction_counts(db: Session, account_ids: List[int]) -> Dict[int, int]:
    if not account_ids:
        return {}
    rows = db.query(TransactionDB.account_id, func.count(TransactionDB.id)).filter(
        TransactionDB.account_id.in_(account_ids)
    ).group_by(TransactionDB.account_id).all()
    return {account_id: count for account_id, count in rows}


def _matches_scope(item, usage: Optional[str], company_id: Optional[int]) -> bool:
    """A usage filter takes precedence; company_id only applies without one"""
    if usage is not None:
        return item.usage == usage
    if company_id is not None:
        return item.company_id == company_id
    return True


def build_dashboard(
    db: Session,
    user_id: int,
    normalizer: CurrencyNormalizer,
    usage: Optional[str] = None,
    company_id: Optional[int] = None,
    now: Optional[datetime] = None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS
) -> DashboardSummary:
    user = db.get(UserDB, user_id)
    if not user:
        raise NotFoundError(f"User with id {user_id} not found")
    now = now or datetime.utcnow()
    display_currency = user.display_currency

    accounts = [
        account for account in crud_account.read_visible_accounts(db, user_id)
        if _matches_scope(account, usage, company_id)
    ]
    counts = _transaction_counts(db, [account.id for account in accounts])

    accounts_by_type: Dict[str, List[DashboardAccount]] = {}
    unconvertible_ids: List[int] = []
    brut_balance = Decimal("0")
    loan_total = Decimal("0")
    distribution = {"personal": Decimal("0"), "professional": Decimal("0")}

    for account in accounts:
        balance = Decimal(account.balance or 0)
        converted = normalizer.to_display(balance, account.currency, display_currency)
        if converted is None:
            unconvertible_ids.append(account.id)
        else:
            if account.type in BRUT_ACCOUNT_TYPES:
                brut_balance += converted
            elif account.type == LOAN_TYPE:
                loan_total += converted
            if account.type != LOAN_TYPE:
                distribution["professional" if account.usage == "professional" else "personal"] += converted

        age_days = (now - account.last_sync).days if account.last_sync else None
        accounts_by_type.setdefault(account.type, []).append(DashboardAccount(
            id=account.id,
            name=account.display_name,
            type=account.type,
            usage=account.usage,
            balance=_money(balance),
            currency=account.currency,
            display_balance=_money(converted) if converted is not None else None,
            stale=is_stale(account.last_sync, counts.get(account.id, 0), now, max_age_days),
            last_sync_age_days=age_days
        ))

    assets_out: List[DashboardAsset] = []
    assets_brut = Decimal("0")
    assets_net = Decimal("0")
    for asset in crud_asset.read_user_assets(db, user_id):
        if not _matches_scope(asset, usage, company_id):
            continue
        value = normalizer.to_display(crud_asset.asset_value(asset), asset.currency, display_currency)
        if value is None:
            logger.warning(f"Asset {asset.id} excluded from dashboard, no rate {asset.currency} -> {display_currency}")
            continue

        loan_balance: Optional[Decimal] = Decimal("0")
        if asset.linked_loan_account_id:
            loan = db.get(AccountDB, asset.linked_loan_account_id)
            if loan is not None:
                loan_balance = normalizer.to_display(loan.balance or 0, loan.currency, display_currency)
                if loan_balance is None:
                    logger.warning(
                        f"Loan {loan.id} linked to asset {asset.id} left out, "
                        f"no rate {loan.currency} -> {display_currency}"
                    )
                    if loan.id not in unconvertible_ids:
                        unconvertible_ids.append(loan.id)

        assets_brut += value
        assets_net += value + (loan_balance or Decimal("0"))

        assets_out.append(DashboardAsset(
            id=asset.id,
            type=asset.type,
            name=asset.name,
            current_value=_money(crud_asset.asset_value(asset)),
            loan_balance=_money(loan_balance) if loan_balance is not None else None,
            net_value=_money(value + loan_balance) if loan_balance is not None else None,
            monthly_costs=_money(crud_asset.monthly_total(asset.costs)),
            monthly_revenues=_money(crud_asset.monthly_total(asset.revenues))
        ))

    net_balance = brut_balance + loan_total
    company_count = db.query(func.count(CompanyDB.id)).filter(CompanyDB.user_id == user_id).scalar() or 0

    return DashboardSummary(
        display_currency=display_currency,
        financial=FinancialSummary(
            brut_balance=_money(brut_balance),
            loan_total=_money(loan_total),
            net_balance=_money(net_balance),
            accounts_by_type=accounts_by_type
        ),
        patrimoine=PatrimoineSummary(
            brut_value=_money(assets_brut),
            net_value=_money(assets_net),
            count=len(assets_out),
            assets=assets_out
        ),
        totals=Totals(
            brut=_money(brut_balance + assets_brut),
            net=_money(net_balance + assets_net)
        ),
        distribution=Distribution(
            personal=_money(distribution["personal"]),
            professional=_money(distribution["professional"])
        ),
        account_count=len(accounts),
        company_count=company_count,
        unconvertible_account_ids=unconvertible_ids
    )
