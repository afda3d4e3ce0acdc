"""
Order Payment API Endpoints.

Completion, payment capture (single and split), status changes and
Account order billing.
"""

from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.db.session import get_db
from pos_backend.app.core.dependencies import Clock, get_clock, get_tenant_id
from pos_backend.app.core.guards import ALL_STAFF_ROLES, require_role
from pos_backend.app.domain.ledger.order_debit import OrderDebitPoster
from pos_backend.app.domain.ledger.summary_builder import format_currency
from pos_backend.app.domain.orders.order_payment import (
    CompletionResult,
    OrderPaymentService,
    SinglePaymentInput,
    SplitLeg,
)
from pos_backend.app.models.ledger_enums import OrderStatus
from pos_backend.app.schemas.ledger import LedgerEntryResponse, side_effect_responses
from pos_backend.app.schemas.order_payment import (
    AccountDebitResponse,
    OrderCompletionResponse,
    OrderResponse,
    OrderStatusResponse,
    OrderStatusUpdate,
    PaymentTransactionResponse,
    SinglePaymentRequest,
    SplitPaymentRequest,
)
from pos_backend.app.services.audit import log_action, AuditAction

router = APIRouter(prefix="/orders", tags=["Order Payments"])


def _completion_response(result: CompletionResult) -> OrderCompletionResponse:
    return OrderCompletionResponse(
        order=OrderResponse.model_validate(result.order),
        decision=result.decision.value,
        completed=result.completed,
        payment_required=result.payment_required,
        previous_status=result.previous_status,
        change_due=result.change_due,
        transactions=[PaymentTransactionResponse.model_validate(row) for row in result.transactions]
    )


@router.post("/{order_id}/account-debit", response_model=AccountDebitResponse)
async def post_account_debit(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Bill an Account order to its customer's ledger. Safe to repeat.
    """
    result = await OrderDebitPoster.post_order_debit(db, tenant_id, order_id, current_user["user_id"], clock)
    response = AccountDebitResponse(entry=LedgerEntryResponse.model_validate(result.entry), created=result.created)

    if result.created:
        audit = await log_action(
            db,
            current_user,
            AuditAction.ACCOUNT_DEBIT_POSTED,
            entity_type="order",
            entity_id=order_id,
            summary=f"Order billed to account: {format_currency(response.entry.amount)}",
            metadata={
                "customer_id": response.entry.customer_id,
                "entry_id": response.entry.id,
                "balance_after": str(response.entry.balance_after)
            }
        )
        response.side_effects = side_effect_responses(audit)
    return response


@router.post("/{order_id}/complete", response_model=OrderCompletionResponse)
async def complete_order(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Complete an order. Paid and Account orders complete immediately; other
    orders come back with payment_required = true.
    """
    result = await OrderPaymentService.complete_order(db, tenant_id, order_id, current_user["user_id"], clock)
    response = _completion_response(result)

    if result.completed:
        audit = await log_action(
            db,
            current_user,
            AuditAction.ORDER_STATUS_CHANGED,
            entity_type="order",
            entity_id=order_id,
            summary=f"Order completed ({response.decision})",
            metadata={
                "before": response.previous_status.value,
                "after": response.order.order_status.value,
                "payment_status": response.order.payment_status.value
            }
        )
        response.side_effects = side_effect_responses(audit)
    return response


@router.post("/{order_id}/payment", response_model=OrderCompletionResponse)
async def complete_single_payment(
    payment_data: SinglePaymentRequest,
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Pay with one method (optional discount) and complete the order.
    """
    result = await OrderPaymentService.capture_single_payment(
        db,
        tenant_id,
        order_id,
        SinglePaymentInput(
            payment_method=payment_data.payment_method,
            discount_type=payment_data.discount_type,
            discount_value=payment_data.discount_value,
            cash_received=payment_data.cash_received
        ),
        current_user["user_id"],
        clock
    )
    response = _completion_response(result)

    audit = await log_action(
        db,
        current_user,
        AuditAction.PAYMENT_COMPLETED,
        entity_type="order",
        entity_id=order_id,
        summary=f"Payment completed: {format_currency(response.order.total_amount)} via {response.order.payment_method.value}",
        metadata={
            "before": response.previous_status.value,
            "after": response.order.order_status.value,
            "payment_status_before": result.previous_payment_status.value,
            "discount_amount": str(response.order.discount_amount),
            "total_amount": str(response.order.total_amount)
        }
    )
    response.side_effects = side_effect_responses(audit)
    return response


@router.post("/{order_id}/split-payment", response_model=OrderCompletionResponse)
async def complete_split_payment(
    payment_data: SplitPaymentRequest,
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Pay with several methods whose amounts add up to the order total.
    """
    legs = [
        SplitLeg(
            payment_method=leg.payment_method,
            amount=leg.amount,
            reference_number=leg.reference_number,
            notes=leg.notes
        )
        for leg in payment_data.payments
    ]
    result = await OrderPaymentService.capture_split_payment(
        db, tenant_id, order_id, legs, current_user["user_id"], clock
    )
    response = _completion_response(result)

    audit = await log_action(
        db,
        current_user,
        AuditAction.SPLIT_PAYMENT_COMPLETED,
        entity_type="order",
        entity_id=order_id,
        summary=f"Split payment completed: {format_currency(response.order.amount_paid)} across {len(legs)} methods",
        metadata={
            "before": response.previous_status.value,
            "after": response.order.order_status.value,
            "legs": [
                {"method": row.payment_method.value, "amount": str(row.amount)}
                for row in response.transactions
            ]
        }
    )
    response.side_effects = side_effect_responses(audit)
    return response


@router.patch("/{order_id}/status", response_model=OrderStatusResponse)
async def update_order_status(
    status_data: OrderStatusUpdate,
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock)
):
    """
    Move an order along its lifecycle or cancel it.
    """
    change = await OrderPaymentService.update_order_status(
        db,
        tenant_id,
        order_id,
        status_data.order_status,
        current_user["user_id"],
        clock,
        cancellation_reason=status_data.cancellation_reason
    )
    response = OrderStatusResponse(order=OrderResponse.model_validate(change.order), previous_status=change.previous_status)

    cancelled = status_data.order_status == OrderStatus.CANCELLED
    audit = await log_action(
        db,
        current_user,
        AuditAction.ORDER_CANCELLED if cancelled else AuditAction.ORDER_STATUS_CHANGED,
        entity_type="order",
        entity_id=order_id,
        summary=f"Order status: {response.previous_status.value} -> {response.order.order_status.value}",
        metadata={
            "before": response.previous_status.value,
            "after": response.order.order_status.value,
            "reason": status_data.cancellation_reason
        }
    )
    response.side_effects = side_effect_responses(audit)
    return response


@router.get("/{order_id}/payment-transactions", response_model=List[PaymentTransactionResponse])
async def list_payment_transactions(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_STAFF_ROLES)),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Split-payment legs recorded for an order.
    """
    return await OrderPaymentService.list_payment_transactions(db, tenant_id, order_id)
