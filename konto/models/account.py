from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal


class AccountBalanceUpdate(BaseModel):
    balance: Decimal = Field(..., description="New balance in the account's native currency")

    @field_validator('balance')
    @classmethod
    def validate_balance(cls, v: Decimal) -> Decimal:
        return round(v, 2)


class AccountResponse(BaseModel):
    """Account data returned to client"""
    id: int
    user_id: int
    company_id: Optional[int]
    provider: Optional[str]
    name: str
    custom_name: Optional[str]
    balance: Decimal
    currency: str
    type: str
    subtype: Optional[str]
    usage: str
    hidden: bool
    last_sync: Optional[datetime]

    class Config:
        from_attributes = True


class SyncResponse(BaseModel):
    """Outcome of a manually triggered sync"""
    accounts_updated: int
    transactions_inserted: int
    reconnect_required: bool = False
