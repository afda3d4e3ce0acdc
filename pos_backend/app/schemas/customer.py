"""
Customer Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime, date
from decimal import Decimal
from typing import Optional


class CustomerCreate(BaseModel):
    """Schema for registering a customer."""
    full_name: str = Field(..., min_length=1, max_length=150, description="Customer name")
    phone: Optional[str] = Field(None, max_length=30, description="Phone number, unique per restaurant")
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0, description="Maximum debit balance, 0 = no limit")


class CustomerResponse(BaseModel):
    """Customer profile. account_balance is the cached hint, see the ledger summary for the authoritative value."""
    id: int
    full_name: str
    phone: Optional[str]
    credit_limit: Decimal
    account_balance: Decimal
    last_payment_date: Optional[date]
    last_payment_amount: Decimal
    created_at: datetime

    class Config:
        from_attributes = True
