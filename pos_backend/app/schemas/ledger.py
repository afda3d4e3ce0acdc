"""
Ledger Schemas.

Read models returned by the summary builder and request/response bodies for
the ledger endpoints. Money is Decimal throughout.
"""

from pydantic import BaseModel, Field
from datetime import datetime, date, time
from decimal import Decimal
from typing import Literal, Optional, List

from pos_backend.app.models.ledger_enums import BalanceKind, PaymentMethod, TransactionType

# Where a summary's balance came from
BalanceSource = Literal["ledger", "customer_hint", "cache"]


class SideEffectResponse(BaseModel):
    """Outcome of a non-fatal side effect (audit log, cache write)."""
    name: str
    ok: bool
    error: Optional[str] = None

    class Config:
        from_attributes = True


class BalanceDisplay(BaseModel):
    """How a balance is presented to staff."""
    kind: BalanceKind
    label: str
    amount: Decimal = Field(..., description="Absolute amount")
    formatted: str = Field(..., description="e.g. 'Rs 1,250.00'")
    available_credit: Optional[Decimal] = Field(None, description="credit_limit - balance when a limit is set")


class LedgerSummary(BaseModel):
    """Aggregate view of one customer's account."""
    customer_id: int
    full_name: str
    phone: Optional[str] = None
    account_balance: Decimal = Field(..., description="Authoritative balance (latest ledger entry)")
    cached_balance: Decimal = Field(..., description="Denormalized customer field, advisory")
    credit_limit: Decimal
    last_payment_date: Optional[date] = None
    last_payment_amount: Decimal = Decimal("0")
    unpaid_orders_count: int = 0
    total_unpaid_amount: Decimal = Decimal("0")
    display: BalanceDisplay
    balance_source: BalanceSource = "ledger"
    is_stale: bool = False

    @property
    def has_history(self) -> bool:
        return (
            self.account_balance != 0
            or self.last_payment_amount > 0
            or self.unpaid_orders_count > 0
        )


class LedgerSummaryResponse(BaseModel):
    summary: LedgerSummary
    side_effects: List[SideEffectResponse] = []


class StatementEntry(BaseModel):
    """One ledger row with its linked order and payment."""
    id: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str
    notes: Optional[str] = None
    transaction_date: date
    transaction_time: time
    created_at: datetime
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    order_type: Optional[str] = None
    payment_id: Optional[int] = None
    payment_number: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    is_record_only: bool = False


class LedgerStatement(BaseModel):
    """Chronological statement (oldest first) for a customer."""
    customer_id: int
    full_name: str
    phone: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    entries: List[StatementEntry]
    total_debits: Decimal
    total_credits: Decimal
    debit_count: int
    credit_count: int
    opening_balance: Decimal
    closing_balance: Decimal
    current_balance: Decimal
    balance_source: BalanceSource = "ledger"
    is_stale: bool = False


class LedgerStatementResponse(BaseModel):
    statement: LedgerStatement
    side_effects: List[SideEffectResponse] = []


class UnpaidOrder(BaseModel):
    """Account order awaiting settlement."""
    id: int
    order_number: str
    order_type: Optional[str]
    order_date: datetime
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal = Field(..., description="amount_due, or total minus paid when not recorded")
    payment_status: str
    days_outstanding: int


class PaymentCreate(BaseModel):
    """Record a payment received from a customer. Amount is validated by the recorder."""
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    id: int
    payment_number: str
    customer_id: int
    amount_received: Decimal
    payment_method: PaymentMethod
    reference_number: Optional[str]
    notes: Optional[str]
    received_by: Optional[int]
    amount_settled: Decimal
    amount_unapplied: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    id: int
    customer_id: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    order_id: Optional[int]
    payment_id: Optional[int]
    description: str
    notes: Optional[str]
    created_by: Optional[int]
    transaction_date: date
    transaction_time: time
    created_at: datetime

    class Config:
        from_attributes = True


class RecordPaymentResponse(BaseModel):
    """Result of recording a payment. Allocations are always empty (flat-balance settlement)."""
    payment: PaymentResponse
    ledger_entry: LedgerEntryResponse
    allocations: List[dict] = []
    total_settled: Decimal
    credit_used: Decimal
    advance_amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    display: BalanceDisplay
    side_effects: List[SideEffectResponse] = []


class PaymentDetailsResponse(BaseModel):
    payment: PaymentResponse
    customer_id: int
    customer_name: str
    customer_phone: Optional[str]
    allocations: List[dict] = []


class LedgerEntryCreate(BaseModel):
    """Manual ledger entry (adjustment, opening balance, order-specific settlement)."""
    transaction_type: TransactionType
    amount: Decimal
    description: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=500)
    order_id: Optional[int] = None
    payment_id: Optional[int] = None


class LedgerEntryPostResponse(BaseModel):
    entry: LedgerEntryResponse
    side_effects: List[SideEffectResponse] = []


class ChainViolation(BaseModel):
    entry_id: int
    kind: Literal["chain", "arithmetic"]
    expected: Decimal
    actual: Decimal


class IntegrityReport(BaseModel):
    customer_id: int
    entry_count: int
    ledger_balance: Decimal
    cached_balance: Decimal
    cached_balance_matches: bool
    violations: List[ChainViolation]
    is_valid: bool


class ReconcileResponse(BaseModel):
    customer_id: int
    previous_cached_balance: Decimal
    account_balance: Decimal
    changed: bool
    side_effects: List[SideEffectResponse] = []


class AuditEntryResponse(BaseModel):
    id: int
    action: str
    actor_id: Optional[int]
    actor_username: Optional[str]
    entity_type: Optional[str]
    entity_id: Optional[int]
    summary: Optional[str]
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True


def side_effect_responses(*results) -> List[SideEffectResponse]:
    """Convert SideEffectResult values, skipping side effects that did not run."""
    return [SideEffectResponse.model_validate(result) for result in results if result is not None]
