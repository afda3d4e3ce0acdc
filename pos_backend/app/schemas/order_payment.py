"""
Order Payment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, List

from pos_backend.app.models.ledger_enums import OrderStatus, PaymentMethod, PaymentStatus
from pos_backend.app.schemas.ledger import LedgerEntryResponse, SideEffectResponse


class OrderResponse(BaseModel):
    """Ledger-relevant view of an order."""
    id: int
    order_number: str
    customer_id: Optional[int]
    order_type: Optional[str]
    order_date: datetime
    subtotal: Optional[Decimal]
    discount_amount: Decimal
    discount_percentage: Decimal
    loyalty_discount_amount: Decimal
    delivery_charges: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Optional[Decimal]
    payment_method: Optional[PaymentMethod]
    payment_status: PaymentStatus
    order_status: OrderStatus
    cancellation_reason: Optional[str]

    class Config:
        from_attributes = True


class PaymentTransactionResponse(BaseModel):
    id: int
    order_id: int
    payment_method: PaymentMethod
    amount: Decimal
    reference_number: Optional[str]
    notes: Optional[str]
    recorded_by: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class SinglePaymentRequest(BaseModel):
    """Pay an order with one method. Discount is recomputed against the subtotal."""
    payment_method: PaymentMethod
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Decimal = Field(default=Decimal("0"), description="Percent (0-100) or fixed amount")
    cash_received: Optional[Decimal] = Field(None, description="Required for Cash, must cover the new total")


class SplitLegRequest(BaseModel):
    payment_method: PaymentMethod
    amount: Decimal
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class SplitPaymentRequest(BaseModel):
    payments: List[SplitLegRequest]


class OrderStatusUpdate(BaseModel):
    order_status: OrderStatus
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class OrderCompletionResponse(BaseModel):
    """
    Result of completing or paying an order.

    payment_required is true when the order still needs a payment captured
    (single or split) before it can complete.
    """
    order: OrderResponse
    decision: Literal["already_paid", "account", "capture_required"]
    completed: bool
    payment_required: bool
    previous_status: OrderStatus
    change_due: Optional[Decimal] = None
    transactions: List[PaymentTransactionResponse] = []
    side_effects: List[SideEffectResponse] = []


class OrderStatusResponse(BaseModel):
    order: OrderResponse
    previous_status: OrderStatus
    side_effects: List[SideEffectResponse] = []


class AccountDebitResponse(BaseModel):
    """Debit posted (or found) for an Account order."""
    entry: LedgerEntryResponse
    created: bool
    side_effects: List[SideEffectResponse] = []
