"""
Order Debit Poster (Domain Logic).

Bills an Account order to the customer's ledger. Posting is idempotent on
order_id: an order that already has a balance-affecting debit returns the
existing entry instead of charging the customer twice.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.core.dependencies import Clock
from pos_backend.app.core.exceptions import (
    CreditLimitExceededError,
    InvalidAmountError,
    InvalidPaymentMethodError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
)
from pos_backend.app.domain.ledger.ledger_store import LedgerEntryInput, LedgerStore
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.ledger_enums import OrderStatus, PaymentMethod, TransactionType
from pos_backend.app.models.order import Order

logger = logging.getLogger("pos_ledger.ledger")


@dataclass
class OrderDebitResult:
    entry: CustomerLedgerEntry
    created: bool


async def find_order_debit(db: AsyncSession, tenant_id: int, order_id: int) -> Optional[CustomerLedgerEntry]:
    result = await db.execute(
        select(CustomerLedgerEntry)
        .where(
            CustomerLedgerEntry.user_id == tenant_id,
            CustomerLedgerEntry.order_id == order_id,
            CustomerLedgerEntry.transaction_type == TransactionType.DEBIT,
            CustomerLedgerEntry.balance_after != CustomerLedgerEntry.balance_before,
        )
        .order_by(CustomerLedgerEntry.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


class OrderDebitPoster:

    @staticmethod
    async def post_order_debit(
        db: AsyncSession,
        tenant_id: int,
        order_id: int,
        created_by: Optional[int],
        clock: Clock
    ) -> OrderDebitResult:
        """
        Post the debit for an Account order.

        Amount is what the order still owes (amount_due, or total minus paid).
        A credit_limit above zero caps the resulting balance.

        Raises:
            OrderNotFoundError: order not in this tenant
            InvalidPaymentMethodError: order is not billed to an account or has no customer
            InvalidAmountError: order has nothing left to bill
            CreditLimitExceededError: balance would pass the customer's credit limit
        """
        result = await db.execute(select(Order).where(Order.id == order_id, Order.user_id == tenant_id))
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)
        if order.payment_method != PaymentMethod.ACCOUNT or order.customer_id is None:
            method = order.payment_method.value if order.payment_method else "None"
            raise InvalidPaymentMethodError(method, "not an account order with a customer")
        if order.order_status == OrderStatus.CANCELLED:
            raise InvalidStatusTransitionError(order.order_status.value, "Billed")

        amount = order.outstanding_amount
        if amount <= 0:
            raise InvalidAmountError("Order has no outstanding amount to bill", details={"order_id": order_id})

        order_number = order.order_number
        customer_id = order.customer_id

        existing = await find_order_debit(db, tenant_id, order_id)
        if existing:
            return OrderDebitResult(entry=existing, created=False)

        async def work(customer: Customer) -> OrderDebitResult:
            # Re-check under the customer lock
            already = await find_order_debit(db, tenant_id, order_id)
            if already:
                return OrderDebitResult(entry=already, created=False)

            entry = await LedgerStore.append_entry(
                db,
                customer,
                LedgerEntryInput(
                    transaction_type=TransactionType.DEBIT,
                    amount=amount,
                    description=f"Order #{order_number}",
                    order_id=order_id,
                    created_by=created_by,
                ),
                clock(),
            )
            if customer.credit_limit and customer.credit_limit > 0 and entry.balance_after > customer.credit_limit:
                raise CreditLimitExceededError(customer.id, customer.credit_limit, entry.balance_after)
            return OrderDebitResult(entry=entry, created=True)

        result = await LedgerStore.run_locked(
            db, tenant_id, customer_id, work, operation="post order debit"
        )
        if result.created:
            logger.info("Order %s billed to customer %s (tenant %s)", order_id, customer_id, tenant_id)
        return result
