"""
Customer Ledger API Endpoints.

Summaries, statements, payments and manual entries for customer accounts.
Writes go through the ledger store; audit and cache outcomes are reported
as side effects next to the result.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.db.session import get_db
from pos_backend.app.db.views import LedgerCapabilities, get_ledger_capabilities
from pos_backend.app.core.dependencies import Clock, get_clock, get_tenant_id
from pos_backend.app.core.exceptions import OrderNotFoundError, PaymentNotFoundError, operation_failure
from pos_backend.app.core.guards import ALL_STAFF_ROLES, LEDGER_ADMIN_ROLES, require_role
from pos_backend.app.domain.ledger.ledger_store import LedgerEntryInput, LedgerStore, validate_amount
from pos_backend.app.domain.ledger.offline import read_through_cache
from pos_backend.app.domain.ledger.payment_recorder import PaymentInput, PaymentRecorder
from pos_backend.app.domain.ledger.statement_export import build_statement_csv, statement_filename
from pos_backend.app.domain.ledger.summary_builder import LedgerSummaryBuilder, format_currency, get_balance_display
from pos_backend.app.domain.orders.order_payment import OrderPaymentService
from pos_backend.app.schemas.ledger import (
    AuditEntryResponse,
    IntegrityReport,
    LedgerEntryCreate,
    LedgerEntryPostResponse,
    LedgerEntryResponse,
    LedgerStatement,
    LedgerStatementResponse,
    LedgerSummary,
    LedgerSummaryResponse,
    PaymentCreate,
    PaymentDetailsResponse,
    PaymentResponse,
    ReconcileResponse,
    RecordPaymentResponse,
    UnpaidOrder,
    side_effect_responses,
)
from pos_backend.app.services.audit import get_audit_trail, log_action, AuditAction
from pos_backend.app.services.cache import LedgerCache

router = APIRouter(prefix="/ledger", tags=["Customer Ledger"])


@router.get("/customers", response_model=List[LedgerSummary])
async def get_all_customers_for_ledger(
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    capabilities: LedgerCapabilities = Depends(get_ledger_capabilities)
):
    """
    Every customer with their ledger summary, customers with history first.
    """
    return await LedgerSummaryBuilder.get_all_customers_for_ledger(db, tenant_id, capabilities)


@router.get("/customers/with-balance", response_model=List[LedgerSummary])
async def get_customers_with_balance(
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    capabilities: LedgerCapabilities = Depends(get_ledger_capabilities)
):
    """
    Customers who owe money, highest balance first.
    """
    return await LedgerSummaryBuilder.get_customers_with_balance(db, tenant_id, capabilities)


@router.get("/customers/{customer_id}/summary", response_model=LedgerSummaryResponse)
async def get_customer_ledger_summary(
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    capabilities: LedgerCapabilities = Depends(get_ledger_capabilities)
):
    """
    Balance, credit limit, unpaid orders and last payment for one customer.

    Served from cache (is_stale = true) when the database cannot be read.
    """
    read = await read_through_cache(
        LedgerCache.summary_key(tenant_id, customer_id),
        lambda: LedgerSummaryBuilder.get_customer_ledger_summary(db, tenant_id, customer_id, capabilities),
        LedgerSummary
    )
    return LedgerSummaryResponse(summary=read.value, side_effects=side_effect_responses(read.cache_write))


@router.get("/customers/{customer_id}/statement", response_model=LedgerStatementResponse)
async def get_customer_ledger(
    customer_id: int = Path(..., description="Customer ID"),
    date_from: Optional[date] = Query(None, description="First transaction date (inclusive)"),
    date_to: Optional[date] = Query(None, description="Last transaction date (inclusive)"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Chronological statement with linked order numbers and payment methods.
    """
    read = await read_through_cache(
        LedgerCache.statement_key(tenant_id, customer_id, date_from, date_to),
        lambda: LedgerSummaryBuilder.get_customer_ledger(db, tenant_id, customer_id, date_from, date_to),
        LedgerStatement
    )
    return LedgerStatementResponse(statement=read.value, side_effects=side_effect_responses(read.cache_write))


@router.get("/customers/{customer_id}/statement.csv")
async def download_customer_ledger(
    customer_id: int = Path(..., description="Customer ID"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    capabilities: LedgerCapabilities = Depends(get_ledger_capabilities),
    clock: Clock = Depends(get_clock)
):
    """
    Statement as CSV: Date, Description, Order #, Debit (Dr), Credit (Cr), Balance,
    followed by a summary block.
    """
    statement = await read_through_cache(
        LedgerCache.statement_key(tenant_id, customer_id, date_from, date_to),
        lambda: LedgerSummaryBuilder.get_customer_ledger(db, tenant_id, customer_id, date_from, date_to),
        LedgerStatement
    )
    summary = await read_through_cache(
        LedgerCache.summary_key(tenant_id, customer_id),
        lambda: LedgerSummaryBuilder.get_customer_ledger_summary(db, tenant_id, customer_id, capabilities),
        LedgerSummary
    )

    content = build_statement_csv(statement.value, summary.value)
    filename = statement_filename(summary.value.full_name, clock().date())
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.get("/customers/{customer_id}/unpaid-orders", response_model=List[UnpaidOrder])
async def get_unpaid_orders(
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Account orders awaiting settlement, oldest first.
    """
    return await LedgerSummaryBuilder.get_unpaid_orders(db, tenant_id, customer_id, clock)


@router.post("/customers/{customer_id}/payments", response_model=RecordPaymentResponse)
async def record_payment(
    payment_data: PaymentCreate,
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Record a payment against the customer's account balance.
    """
    result = await PaymentRecorder.record_payment(
        db,
        tenant_id,
        customer_id,
        PaymentInput(
            amount=payment_data.amount,
            payment_method=payment_data.payment_method,
            reference_number=payment_data.reference_number,
            notes=payment_data.notes
        ),
        received_by=current_user["user_id"],
        clock=clock
    )

    response = RecordPaymentResponse(
        payment=PaymentResponse.model_validate(result.payment),
        ledger_entry=LedgerEntryResponse.model_validate(result.ledger_entry),
        allocations=result.allocations,
        total_settled=result.total_settled,
        credit_used=result.credit_used,
        advance_amount=result.advance_amount,
        balance_before=result.balance_before,
        balance_after=result.balance_after,
        display=get_balance_display(result.balance_after)
    )

    audit = await log_action(
        db,
        current_user,
        AuditAction.PAYMENT_RECORDED,
        entity_type="customer",
        entity_id=customer_id,
        summary=f"Payment received: {format_currency(response.payment.amount_received)} via {response.payment.payment_method.value}",
        metadata={
            "payment_id": response.payment.id,
            "payment_number": response.payment.payment_number,
            "amount": str(response.payment.amount_received),
            "balance_before": str(response.balance_before),
            "balance_after": str(response.balance_after)
        }
    )
    response.side_effects = side_effect_responses(audit)
    return response


@router.get("/payments/{payment_id}", response_model=PaymentDetailsResponse)
async def get_payment_details(
    payment_id: int = Path(..., description="Payment ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    async with operation_failure("load payment", write=False):
        payment, customer = await PaymentRecorder.get_payment_details(db, tenant_id, payment_id)
    return PaymentDetailsResponse(
        payment=PaymentResponse.model_validate(payment),
        customer_id=customer.id,
        customer_name=customer.full_name,
        customer_phone=customer.phone,
        allocations=[]
    )


async def _check_entry_references(db: AsyncSession, tenant_id: int, customer_id: int, entry: LedgerEntryCreate):
    """Linked order/payment must belong to the same customer."""
    async with operation_failure("post ledger entry", write=False):
        if entry.order_id is not None:
            order = await OrderPaymentService.get_order(db, tenant_id, entry.order_id)
            if order.customer_id != customer_id:
                raise OrderNotFoundError(entry.order_id)
        if entry.payment_id is not None:
            payment, _ = await PaymentRecorder.get_payment_details(db, tenant_id, entry.payment_id)
            if payment.customer_id != customer_id:
                raise PaymentNotFoundError(entry.payment_id)


def _entry_input(entry: LedgerEntryCreate, current_user: dict) -> LedgerEntryInput:
    return LedgerEntryInput(
        transaction_type=entry.transaction_type,
        amount=entry.amount,
        description=entry.description,
        order_id=entry.order_id,
        payment_id=entry.payment_id,
        notes=entry.notes,
        created_by=current_user["user_id"]
    )


@router.post("/customers/{customer_id}/entries", response_model=LedgerEntryPostResponse)
async def create_ledger_entry(
    entry_data: LedgerEntryCreate,
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(LEDGER_ADMIN_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Post a balance-affecting entry (adjustment, opening balance, advance).
    """
    validate_amount(entry_data.amount)
    await _check_entry_references(db, tenant_id, customer_id, entry_data)

    entry = await LedgerStore.create_ledger_entry(
        db, tenant_id, customer_id, _entry_input(entry_data, current_user), clock
    )
    response = LedgerEntryPostResponse(entry=LedgerEntryResponse.model_validate(entry))

    audit = await log_action(
        db,
        current_user,
        AuditAction.LEDGER_ENTRY_POSTED,
        entity_type="customer",
        entity_id=customer_id,
        summary=f"Manual {response.entry.transaction_type.value}: {response.entry.amount}",
        metadata={
            "entry_id": response.entry.id,
            "balance_before": str(response.entry.balance_before),
            "balance_after": str(response.entry.balance_after)
        }
    )
    response.side_effects = side_effect_responses(audit)
    return response


@router.post("/customers/{customer_id}/entries/record-only", response_model=LedgerEntryPostResponse)
async def create_ledger_entry_without_balance_update(
    entry_data: LedgerEntryCreate,
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(LEDGER_ADMIN_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Record an entry at the current balance, e.g. money applied to an order
    whose debit is already on the ledger.
    """
    validate_amount(entry_data.amount)
    await _check_entry_references(db, tenant_id, customer_id, entry_data)

    entry = await LedgerStore.create_ledger_entry_without_balance_update(
        db, tenant_id, customer_id, _entry_input(entry_data, current_user), clock
    )
    response = LedgerEntryPostResponse(entry=LedgerEntryResponse.model_validate(entry))

    audit = await log_action(
        db,
        current_user,
        AuditAction.LEDGER_RECORD_ONLY_POSTED,
        entity_type="customer",
        entity_id=customer_id,
        summary=f"Recorded {response.entry.transaction_type.value} of {response.entry.amount} without balance change",
        metadata={"entry_id": response.entry.id, "order_id": response.entry.order_id}
    )
    response.side_effects = side_effect_responses(audit)
    return response


@router.get("/customers/{customer_id}/integrity", response_model=IntegrityReport)
async def check_ledger_integrity(
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(LEDGER_ADMIN_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Verify the balance chain and compare the cached balance with the ledger.
    """
    return await LedgerSummaryBuilder.check_integrity(db, tenant_id, customer_id)


@router.post("/customers/{customer_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_customer_balance(
    customer_id: int = Path(..., description="Customer ID"),
    current_user: dict = Depends(require_role(LEDGER_ADMIN_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Rewrite the customer's cached balance from the ledger.
    """
    previous, current = await LedgerStore.reconcile_cached_balance(db, tenant_id, customer_id, clock)
    response = ReconcileResponse(
        customer_id=customer_id,
        previous_cached_balance=previous,
        account_balance=current,
        changed=previous != current
    )

    if response.changed:
        audit = await log_action(
            db,
            current_user,
            AuditAction.LEDGER_RECONCILED,
            entity_type="customer",
            entity_id=customer_id,
            summary=f"Cached balance corrected from {previous} to {current}",
            metadata={"previous": str(previous), "current": str(current)}
        )
        response.side_effects = side_effect_responses(audit)
    return response


@router.get("/customers/{customer_id}/audit-trail", response_model=List[AuditEntryResponse])
async def get_customer_audit_trail(
    customer_id: int = Path(..., description="Customer ID"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role(LEDGER_ADMIN_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Who recorded payments, posted entries or reconciled this account, newest first.
    """
    async with operation_failure("load audit trail", write=False):
        await LedgerStore.get_customer(db, tenant_id, customer_id)
        return await get_audit_trail(db, tenant_id, entity_type="customer", entity_id=customer_id, limit=limit)
