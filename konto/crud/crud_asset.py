from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
from decimal import Decimal

from konto.db.core import AssetDB, AssetCostDB, AssetRevenueDB, Frequency, NotFoundError
from konto.models.asset import AssetCreate, CashFlowLine


# ===== UTILITY FUNCTIONS =====

def monthly_amount(amount: Decimal, frequency: Optional[str]) -> Decimal:
    """Monthly equivalent of a recurring line. One-time lines do not recur."""
    amount = Decimal(amount)
    if frequency == Frequency.YEARLY.value:
        return amount / 12
    if frequency == Frequency.ONE_TIME.value:
        return Decimal("0")
    return amount


def monthly_total(lines: Iterable) -> Decimal:
    return sum((monthly_amount(line.amount, line.frequency) for line in lines), Decimal("0"))


def asset_value(asset: AssetDB) -> Decimal:
    """
    Value an asset contributes to totals: current value, else purchase price, else 0.
    A recorded current value of 0 also falls back to the purchase price.
    """
    return Decimal(asset.current_value or asset.purchase_price or 0)


# ===== DATABASE OPERATIONS =====

def create_db_asset(db: Session, user_id: int, asset_data: AssetCreate) -> AssetDB:
    """Create an asset together with its cost and revenue lines"""
    db_asset = AssetDB(
        user_id=user_id,
        company_id=asset_data.company_id,
        type=asset_data.type.value,
        name=asset_data.name,
        purchase_price=asset_data.purchase_price,
        current_value=asset_data.current_value,
        currency=asset_data.currency,
        usage=asset_data.usage.value,
        linked_loan_account_id=asset_data.linked_loan_account_id,
        costs=[_cost_row(line) for line in asset_data.costs],
        revenues=[_revenue_row(line) for line in asset_data.revenues],
    )
    db.add(db_asset)
    db.commit()
    db.refresh(db_asset)
    return db_asset


def _cost_row(line: CashFlowLine) -> AssetCostDB:
    return AssetCostDB(label=line.label, amount=line.amount, frequency=line.frequency.value, category=line.category)


def _revenue_row(line: CashFlowLine) -> AssetRevenueDB:
    return AssetRevenueDB(label=line.label, amount=line.amount, frequency=line.frequency.value)


def read_user_assets(db: Session, user_id: int) -> List[AssetDB]:
    return db.query(AssetDB).filter(AssetDB.user_id == user_id).order_by(AssetDB.id).all()


def delete_db_asset(db: Session, asset_id: int, user_id: int) -> bool:
    """Delete an asset; its cost and revenue lines go with it"""
    db_asset = db.query(AssetDB).filter(
        AssetDB.id == asset_id,
        AssetDB.user_id == user_id
    ).first()

    if not db_asset:
        raise NotFoundError(f"Asset with id {asset_id} not found")

    db.delete(db_asset)
    db.commit()
    return True
