from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class AssetTypeEnum(str, Enum):
    REAL_ESTATE = "real_estate"
    VEHICLE = "vehicle"
    VALUABLE = "valuable"
    OTHER = "other"


class FrequencyEnum(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class UsageEnum(str, Enum):
    PERSONAL = "personal"
    PROFESSIONAL = "professional"


class CashFlowLine(BaseModel):
    """A recurring cost or revenue attached to an asset"""
    label: str = Field(..., min_length=1, max_length=255)
    amount: Decimal
    frequency: FrequencyEnum = FrequencyEnum.MONTHLY
    category: Optional[str] = None


class AssetCreate(BaseModel):
    type: AssetTypeEnum = AssetTypeEnum.OTHER
    name: str = Field(..., min_length=1, max_length=255)
    purchase_price: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    usage: UsageEnum = UsageEnum.PERSONAL
    company_id: Optional[int] = None
    linked_loan_account_id: Optional[int] = None
    costs: List[CashFlowLine] = Field(default_factory=list)
    revenues: List[CashFlowLine] = Field(default_factory=list)

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return v.upper()


class CashFlowLineResponse(CashFlowLine):
    id: int

    class Config:
        from_attributes = True


class AssetResponse(BaseModel):
    """Asset data returned to client"""
    id: int
    user_id: int
    company_id: Optional[int]
    type: str
    name: str
    purchase_price: Optional[Decimal]
    current_value: Optional[Decimal]
    currency: str
    usage: str
    linked_loan_account_id: Optional[int]
    costs: List[CashFlowLineResponse]
    revenues: List[CashFlowLineResponse]
    created_at: datetime

    class Config:
        from_attributes = True
