"""
Order Payment Completion Flow (Domain Logic).

Turns a pending order into a paid, completed order.

Decision when an operator completes an order:
- already Paid        -> complete directly
- Account order       -> complete directly, payment stays as is (the debit
                         was posted to the customer's ledger when billed)
- anything else       -> payment must be captured first (single or split)
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.core.dependencies import Clock
from pos_backend.app.core.exceptions import (
    InvalidAmountError,
    InvalidPaymentMethodError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    operation_failure,
)
from pos_backend.app.domain.ledger.order_debit import find_order_debit
from pos_backend.app.domain.ledger.ledger_store import validate_amount
from pos_backend.app.domain.orders.payment_math import SPLIT_TOLERANCE, ZERO, change_due, money, price_order
from pos_backend.app.models.ledger_enums import CAPTURE_METHODS, OrderStatus, PaymentMethod, PaymentStatus
from pos_backend.app.models.order import Order
from pos_backend.app.models.order_payment_transaction import OrderPaymentTransaction

logger = logging.getLogger("pos_ledger.orders")

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PREPARING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


class CompletionDecision(str, enum.Enum):
    ALREADY_PAID = "already_paid"
    ACCOUNT = "account"
    CAPTURE_REQUIRED = "capture_required"


def decide_completion(order: Order) -> CompletionDecision:
    if order.payment_status == PaymentStatus.PAID:
        return CompletionDecision.ALREADY_PAID
    if order.payment_method == PaymentMethod.ACCOUNT:
        return CompletionDecision.ACCOUNT
    return CompletionDecision.CAPTURE_REQUIRED


def check_transition(current: OrderStatus, requested: OrderStatus) -> None:
    if requested not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(current.value, requested.value)


@dataclass
class SinglePaymentInput:
    payment_method: PaymentMethod
    discount_type: Optional[str] = None
    discount_value: Decimal = ZERO
    cash_received: Optional[Decimal] = None


@dataclass
class SplitLeg:
    payment_method: PaymentMethod
    amount: Decimal
    reference_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class StatusChange:
    order: Order
    previous_status: OrderStatus


@dataclass
class CompletionResult:
    order: Order
    decision: CompletionDecision
    previous_status: OrderStatus
    previous_payment_status: PaymentStatus
    completed: bool
    change_due: Optional[Decimal] = None
    transactions: List[OrderPaymentTransaction] = field(default_factory=list)

    @property
    def payment_required(self) -> bool:
        return not self.completed


class OrderPaymentService:

    @staticmethod
    async def get_order(db: AsyncSession, tenant_id: int, order_id: int, for_update: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id, Order.user_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _apply_status(order: Order, new_status: OrderStatus, actor_id: Optional[int], clock: Clock) -> OrderStatus:
        previous = order.order_status
        check_transition(previous, new_status)
        order.order_status = new_status
        order.modified_by = actor_id
        order.updated_at = clock()
        return previous

    @staticmethod
    async def update_order_status(
        db: AsyncSession,
        tenant_id: int,
        order_id: int,
        new_status: OrderStatus,
        actor_id: Optional[int],
        clock: Clock,
        cancellation_reason: Optional[str] = None
    ) -> StatusChange:
        """
        Move an order along Pending -> Preparing -> Ready -> Completed, or cancel it.

        Raises:
            InvalidStatusTransitionError: transition not allowed from the current status
        """
        async with operation_failure("update order status"):
            order = await OrderPaymentService.get_order(db, tenant_id, order_id, for_update=True)
            try:
                previous = OrderPaymentService._apply_status(order, new_status, actor_id, clock)
            except InvalidStatusTransitionError:
                await db.rollback()
                raise
            if new_status == OrderStatus.CANCELLED:
                order.cancellation_reason = cancellation_reason
            await db.commit()

        logger.info("Order %s status %s -> %s (tenant %s)", order_id, previous.value, new_status.value, tenant_id)
        return StatusChange(order=order, previous_status=previous)

    @staticmethod
    async def complete_order(
        db: AsyncSession,
        tenant_id: int,
        order_id: int,
        actor_id: Optional[int],
        clock: Clock
    ) -> CompletionResult:
        """
        Complete an order if no payment needs capturing.

        Paid and Account orders go straight to Completed without touching
        payment_status. Other orders are left as they are and the result
        reports that payment must be captured first.
        """
        async with operation_failure("complete order"):
            order = await OrderPaymentService.get_order(db, tenant_id, order_id, for_update=True)
            decision = decide_completion(order)
            previous = order.order_status
            previous_payment = order.payment_status

            if decision == CompletionDecision.CAPTURE_REQUIRED:
                check_transition(previous, OrderStatus.COMPLETED)
                return CompletionResult(
                    order=order,
                    decision=decision,
                    previous_status=previous,
                    previous_payment_status=previous_payment,
                    completed=False,
                )

            try:
                OrderPaymentService._apply_status(order, OrderStatus.COMPLETED, actor_id, clock)
            except InvalidStatusTransitionError:
                await db.rollback()
                raise
            await db.commit()

        logger.info("Order %s completed (%s, tenant %s)", order_id, decision.value, tenant_id)
        return CompletionResult(
            order=order,
            decision=decision,
            previous_status=previous,
            previous_payment_status=previous_payment,
            completed=True,
        )

    @staticmethod
    async def capture_single_payment(
        db: AsyncSession,
        tenant_id: int,
        order_id: int,
        payment: SinglePaymentInput,
        actor_id: Optional[int],
        clock: Clock
    ) -> CompletionResult:
        """
        Pay an order with one method, apply the discount and complete it.

        Raises:
            InvalidPaymentMethodError: Account/Split/Unpaid, or order already paid
            InvalidAmountError: bad discount, or cash received below the new total
            InvalidStatusTransitionError: order already completed or cancelled
        """
        if payment.payment_method not in CAPTURE_METHODS:
            raise InvalidPaymentMethodError(payment.payment_method.value, "not a single payment method")

        async with operation_failure("complete payment"):
            order = await OrderPaymentService.get_order(db, tenant_id, order_id, for_update=True)
            try:
                await OrderPaymentService._ensure_capturable(db, tenant_id, order)
                check_transition(order.order_status, OrderStatus.COMPLETED)

                priced = price_order(
                    order.pricing_subtotal,
                    payment.discount_type,
                    payment.discount_value,
                    order.loyalty_discount_amount,
                    order.delivery_charges,
                )
                change = None
                if payment.payment_method == PaymentMethod.CASH:
                    if payment.cash_received is None or money(payment.cash_received) < priced.new_total:
                        raise InvalidAmountError(
                            "Cash received is less than the order total",
                            details={"total": str(priced.new_total), "cash_received": str(payment.cash_received)}
                        )
                    change = change_due(priced.new_total, payment.cash_received)
            except (InvalidAmountError, InvalidPaymentMethodError, InvalidStatusTransitionError):
                await db.rollback()
                raise

            previous = order.order_status
            previous_payment = order.payment_status

            order.subtotal = priced.subtotal
            order.discount_amount = priced.discount_amount
            order.discount_percentage = priced.discount_percentage
            order.total_amount = priced.new_total
            order.amount_paid = priced.new_total
            order.amount_due = ZERO
            order.payment_method = payment.payment_method
            order.payment_status = PaymentStatus.PAID
            OrderPaymentService._apply_status(order, OrderStatus.COMPLETED, actor_id, clock)
            await db.commit()

        logger.info(
            "Order %s paid by %s: %s (tenant %s)",
            order_id, payment.payment_method.value, priced.new_total, tenant_id
        )
        return CompletionResult(
            order=order,
            decision=CompletionDecision.CAPTURE_REQUIRED,
            previous_status=previous,
            previous_payment_status=previous_payment,
            completed=True,
            change_due=change,
        )

    @staticmethod
    async def capture_split_payment(
        db: AsyncSession,
        tenant_id: int,
        order_id: int,
        legs: List[SplitLeg],
        actor_id: Optional[int],
        clock: Clock
    ) -> CompletionResult:
        """
        Pay an order with several methods and complete it.

        Legs must each be positive, use a capture method, and sum to the
        amount due within 0.01. One OrderPaymentTransaction per leg.
        """
        if not legs:
            raise InvalidAmountError("Split payment needs at least one payment method")
        amounts = []
        for leg in legs:
            if leg.payment_method not in CAPTURE_METHODS:
                raise InvalidPaymentMethodError(leg.payment_method.value, "not allowed in a split payment")
            amounts.append(validate_amount(leg.amount))
        total_paid = sum(amounts, ZERO)

        async with operation_failure("complete split payment"):
            order = await OrderPaymentService.get_order(db, tenant_id, order_id, for_update=True)
            try:
                await OrderPaymentService._ensure_capturable(db, tenant_id, order)
                check_transition(order.order_status, OrderStatus.COMPLETED)
                amount_due = money(order.outstanding_amount)
                if abs(total_paid - amount_due) > SPLIT_TOLERANCE:
                    raise InvalidAmountError(
                        "Split payment amounts must add up to the order total",
                        details={"amount_due": str(amount_due), "total_paid": str(total_paid)}
                    )
            except (InvalidAmountError, InvalidPaymentMethodError, InvalidStatusTransitionError):
                await db.rollback()
                raise

            previous = order.order_status
            previous_payment = order.payment_status
            now = clock()

            transactions = [
                OrderPaymentTransaction(
                    order_id=order.id,
                    user_id=tenant_id,
                    payment_method=leg.payment_method,
                    amount=amount,
                    reference_number=leg.reference_number,
                    notes=leg.notes,
                    recorded_by=actor_id,
                    created_at=now,
                )
                for leg, amount in zip(legs, amounts)
            ]
            db.add_all(transactions)

            order.amount_paid = money(order.amount_paid) + total_paid
            order.amount_due = ZERO
            order.payment_method = PaymentMethod.SPLIT
            order.payment_status = PaymentStatus.PAID
            OrderPaymentService._apply_status(order, OrderStatus.COMPLETED, actor_id, clock)
            await db.commit()

        logger.info("Order %s split across %s methods: %s (tenant %s)", order_id, len(legs), total_paid, tenant_id)
        return CompletionResult(
            order=order,
            decision=CompletionDecision.CAPTURE_REQUIRED,
            previous_status=previous,
            previous_payment_status=previous_payment,
            completed=True,
            transactions=transactions,
        )

    @staticmethod
    async def list_payment_transactions(
        db: AsyncSession,
        tenant_id: int,
        order_id: int
    ) -> List[OrderPaymentTransaction]:
        async with operation_failure("load payment transactions", write=False):
            await OrderPaymentService.get_order(db, tenant_id, order_id)
            result = await db.execute(
                select(OrderPaymentTransaction)
                .where(OrderPaymentTransaction.order_id == order_id, OrderPaymentTransaction.user_id == tenant_id)
                .order_by(OrderPaymentTransaction.id)
            )
        return list(result.scalars().all())

    @staticmethod
    async def _ensure_capturable(db: AsyncSession, tenant_id: int, order: Order) -> None:
        """Reject capture for paid orders and for orders settled through the customer ledger."""
        if order.payment_status == PaymentStatus.PAID:
            raise InvalidPaymentMethodError(
                order.payment_method.value if order.payment_method else "None", "already settled for this order"
            )
        if order.payment_method == PaymentMethod.ACCOUNT:
            raise InvalidPaymentMethodError(
                PaymentMethod.ACCOUNT.value, "settled through the customer ledger, record a ledger payment instead"
            )
        if await find_order_debit(db, tenant_id, order.id) is not None:
            raise InvalidPaymentMethodError(
                order.payment_method.value if order.payment_method else "None",
                "not allowed, this order is already billed to the customer ledger"
            )
