"""
Payment Recorder (Domain Logic).

"Customer paid us money", end to end, as one atomic unit:
payment row + credit ledger entry + last-payment metadata.

Settlement is flat-balance: every payment reduces the overall balance in
full. There is no per-order allocation, so allocations are always empty.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.core.dependencies import Clock
from pos_backend.app.core.exceptions import (
    ConcurrentModificationError,
    InvalidPaymentMethodError,
    PaymentNotFoundError,
    operation_failure,
)
from pos_backend.app.domain.ledger.ledger_store import LedgerEntryInput, LedgerStore, validate_amount
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.customer_payment import CustomerPayment
from pos_backend.app.models.ledger_enums import CAPTURE_METHODS, PaymentMethod, TransactionType

logger = logging.getLogger("pos_ledger.payments")

ZERO = Decimal("0.00")


@dataclass
class PaymentInput:
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    reference_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class PaymentResult:
    payment: CustomerPayment
    ledger_entry: CustomerLedgerEntry
    total_settled: Decimal
    credit_used: Decimal
    advance_amount: Decimal
    allocations: List[dict] = field(default_factory=list)

    @property
    def balance_before(self) -> Decimal:
        return self.ledger_entry.balance_before

    @property
    def balance_after(self) -> Decimal:
        return self.ledger_entry.balance_after


def format_payment_number(sequence: int) -> str:
    return f"PAY-{sequence:06d}"


async def next_payment_number(db: AsyncSession, tenant_id: int) -> str:
    result = await db.execute(
        select(func.count(CustomerPayment.id)).where(CustomerPayment.user_id == tenant_id)
    )
    return format_payment_number((result.scalar() or 0) + 1)


class PaymentRecorder:

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        payment: PaymentInput,
        received_by: Optional[int],
        clock: Clock
    ) -> PaymentResult:
        """
        Record a payment from a customer.

        Flow:
        1. Validate amount (> 0) and method before touching storage
        2. Lock the customer and create the payment (settled = amount, unapplied = 0)
        3. Post a credit entry "Payment received" linked to the payment
        4. Update last_payment_date (today) and last_payment_amount
        5. Commit all of it together

        Raises:
            InvalidAmountError: amount <= 0
            InvalidPaymentMethodError: Account/Split/Unpaid are not ways to pay
            CustomerNotFoundError: customer not in this tenant
            ConcurrentModificationError: every retry conflicted
        """
        async with operation_failure("record payment"):
            amount = validate_amount(payment.amount)
            if payment.payment_method not in CAPTURE_METHODS:
                raise InvalidPaymentMethodError(payment.payment_method.value, "not accepted for account payments")

        async def work(customer: Customer) -> PaymentResult:
            now = clock()
            row = CustomerPayment(
                user_id=tenant_id,
                customer_id=customer.id,
                payment_number=await next_payment_number(db, tenant_id),
                amount_received=amount,
                payment_method=payment.payment_method,
                reference_number=payment.reference_number,
                notes=payment.notes,
                received_by=received_by,
                amount_settled=amount,
                amount_unapplied=ZERO,
                created_at=now,
            )
            db.add(row)
            try:
                await db.flush()
            except IntegrityError as exc:
                # Another writer took the same payment number
                raise ConcurrentModificationError(customer.id) from exc

            customer.last_payment_date = now.date()
            customer.last_payment_amount = amount

            entry = await LedgerStore.append_entry(
                db,
                customer,
                LedgerEntryInput(
                    transaction_type=TransactionType.CREDIT,
                    amount=amount,
                    description="Payment received",
                    payment_id=row.id,
                    notes=payment.notes,
                    created_by=received_by,
                ),
                now,
            )

            outstanding_before = max(entry.balance_before, ZERO)
            return PaymentResult(
                payment=row,
                ledger_entry=entry,
                total_settled=amount,
                credit_used=ZERO,
                advance_amount=max(amount - outstanding_before, ZERO),
            )

        result = await LedgerStore.run_locked(db, tenant_id, customer_id, work, operation="record payment")
        logger.info(
            "Payment %s of %s recorded for customer %s (tenant %s), balance %s -> %s",
            result.payment.payment_number, amount, customer_id, tenant_id,
            result.balance_before, result.balance_after
        )
        return result

    @staticmethod
    async def get_payment_details(
        db: AsyncSession,
        tenant_id: int,
        payment_id: int
    ) -> Tuple[CustomerPayment, Customer]:
        """Payment with its customer. Raises PaymentNotFoundError outside the tenant."""
        result = await db.execute(
            select(CustomerPayment, Customer)
            .join(Customer, Customer.id == CustomerPayment.customer_id)
            .where(CustomerPayment.id == payment_id, CustomerPayment.user_id == tenant_id)
        )
        row = result.first()
        if row is None:
            raise PaymentNotFoundError(payment_id)
        return row[0], row[1]
