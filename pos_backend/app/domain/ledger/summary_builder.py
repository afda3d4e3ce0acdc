"""
Ledger Summary Builder (Domain Logic).

Read models for the ledger screens: per-customer summary, the all-customers
list, statements, unpaid Account orders and integrity reports.

Summaries come from the precomputed view when the storage declared it at
startup, otherwise they are aggregated from the raw tables. In both cases the
balance is replaced by the reconciler's value before it is returned.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.core.config import settings
from pos_backend.app.core.dependencies import Clock
from pos_backend.app.core.exceptions import CustomerNotFoundError, LedgerReadError, operation_failure
from pos_backend.app.db.views import LedgerCapabilities, customer_ledger_summary_view as summary_view
from pos_backend.app.domain.ledger.balance_reconciler import (
    CHAIN_ORDER,
    BalanceReconciler,
    CachedBalanceHint,
    find_chain_violations,
)
from pos_backend.app.domain.ledger.ledger_store import LedgerStore
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.customer_payment import CustomerPayment
from pos_backend.app.models.ledger_enums import (
    UNPAID_PAYMENT_STATUSES,
    BalanceKind,
    PaymentMethod,
    TransactionType,
)
from pos_backend.app.models.order import Order
from pos_backend.app.schemas.ledger import (
    BalanceDisplay,
    IntegrityReport,
    LedgerStatement,
    LedgerSummary,
    StatementEntry,
    UnpaidOrder,
)

logger = logging.getLogger("pos_ledger.summary")

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

SEARCH_LIMIT = 20

# amount_due when recorded, otherwise total minus what was paid
UNPAID_AMOUNT = func.coalesce(Order.amount_due, Order.total_amount - func.coalesce(Order.amount_paid, 0))


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def format_currency(amount: Decimal) -> str:
    return f"{settings.currency_symbol} {to_money(amount):,.2f}"


def get_balance_display(balance: Decimal, credit_limit: Optional[Decimal] = None) -> BalanceDisplay:
    """
    Classify a balance for display.

    Positive balances are outstanding (customer owes), negative balances are
    credit (paid in advance), zero is clear.
    """
    balance = to_money(balance)
    if balance > 0:
        kind, label = BalanceKind.OUTSTANDING, "Outstanding"
    elif balance < 0:
        kind, label = BalanceKind.CREDIT, "Credit"
    else:
        kind, label = BalanceKind.CLEAR, "Clear"

    available_credit = None
    if credit_limit is not None and credit_limit > 0:
        available_credit = max(to_money(credit_limit) - balance, ZERO)

    return BalanceDisplay(
        kind=kind,
        label=label,
        amount=abs(balance),
        formatted=format_currency(abs(balance)),
        available_credit=available_credit,
    )


async def _unpaid_totals(
    db: AsyncSession,
    tenant_id: int,
    customer_ids: Optional[Iterable[int]] = None
) -> Dict[int, Tuple[int, Decimal]]:
    """customer_id -> (unpaid order count, total unpaid amount)."""
    stmt = (
        select(Order.customer_id, func.count(Order.id), func.sum(UNPAID_AMOUNT))
        .where(
            Order.user_id == tenant_id,
            Order.customer_id.is_not(None),
            Order.payment_status.in_(UNPAID_PAYMENT_STATUSES),
        )
        .group_by(Order.customer_id)
    )
    if customer_ids is not None:
        stmt = stmt.where(Order.customer_id.in_(list(customer_ids)))
    result = await db.execute(stmt)
    return {row[0]: (row[1], to_money(row[2])) for row in result.all()}


async def _latest_payments(
    db: AsyncSession,
    tenant_id: int,
    customer_ids: Optional[Iterable[int]] = None
) -> Dict[int, Tuple[date, Decimal]]:
    """
    customer_id -> (date, amount) of the most recent payment.

    Customers without a payment row fall back to their most recent credit
    ledger entry.
    """
    ids = list(customer_ids) if customer_ids is not None else None

    stmt = (
        select(CustomerPayment.customer_id, CustomerPayment.created_at, CustomerPayment.amount_received)
        .where(CustomerPayment.user_id == tenant_id)
        .order_by(CustomerPayment.created_at.desc(), CustomerPayment.id.desc())
    )
    if ids is not None:
        stmt = stmt.where(CustomerPayment.customer_id.in_(ids))
    latest: Dict[int, Tuple[date, Decimal]] = {}
    for customer_id, created_at, amount in (await db.execute(stmt)).all():
        latest.setdefault(customer_id, (created_at.date(), to_money(amount)))

    credit_stmt = (
        select(CustomerLedgerEntry.customer_id, CustomerLedgerEntry.transaction_date, CustomerLedgerEntry.amount)
        .where(
            CustomerLedgerEntry.user_id == tenant_id,
            CustomerLedgerEntry.transaction_type == TransactionType.CREDIT,
        )
        .order_by(*[column.desc() for column in CHAIN_ORDER])
    )
    if ids is not None:
        missing = [customer_id for customer_id in ids if customer_id not in latest]
        if not missing:
            return latest
        credit_stmt = credit_stmt.where(CustomerLedgerEntry.customer_id.in_(missing))
    for customer_id, transaction_date, amount in (await db.execute(credit_stmt)).all():
        if customer_id not in latest:
            latest[customer_id] = (transaction_date, to_money(amount))
    return latest


def _summary(
    customer_id: int,
    full_name: str,
    phone: Optional[str],
    balance: Decimal,
    cached_balance: Decimal,
    credit_limit: Decimal,
    last_payment: Optional[Tuple[date, Decimal]],
    unpaid: Tuple[int, Decimal],
    balance_source: str = "ledger"
) -> LedgerSummary:
    last_payment_date, last_payment_amount = last_payment or (None, ZERO)
    return LedgerSummary(
        customer_id=customer_id,
        full_name=full_name,
        phone=phone,
        account_balance=to_money(balance),
        cached_balance=to_money(cached_balance),
        credit_limit=to_money(credit_limit),
        last_payment_date=last_payment_date,
        last_payment_amount=to_money(last_payment_amount),
        unpaid_orders_count=unpaid[0] or 0,
        total_unpaid_amount=to_money(unpaid[1]),
        display=get_balance_display(balance, credit_limit),
        balance_source=balance_source,
    )


class LedgerSummaryBuilder:

    @staticmethod
    async def get_customer_ledger_summary(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        capabilities: LedgerCapabilities
    ) -> LedgerSummary:
        """
        Summary for one customer: balance, credit limit, unpaid orders, last payment.

        Raises:
            CustomerNotFoundError: customer not in this tenant
            LedgerReadError / OfflineUnavailableError: storage failure
        """
        async with operation_failure("load ledger summary", write=False):
            if capabilities.summary_view_available:
                result = await db.execute(
                    select(summary_view).where(
                        summary_view.c.customer_id == customer_id,
                        summary_view.c.user_id == tenant_id,
                    )
                )
                row = result.first()
                if row is None:
                    raise CustomerNotFoundError(customer_id)
                full_name, phone, cached, credit_limit = row.full_name, row.phone, row.account_balance, row.credit_limit
                unpaid = (row.unpaid_orders_count, row.total_unpaid_amount)
                last_payment = None
                if row.last_payment_date is not None:
                    last_payment = (row.last_payment_date, row.last_payment_amount)
            else:
                customer = await LedgerStore.get_customer(db, tenant_id, customer_id)
                full_name, phone, credit_limit = customer.full_name, customer.phone, customer.credit_limit
                cached = CachedBalanceHint.from_customer(customer).amount
                unpaid = (await _unpaid_totals(db, tenant_id, [customer_id])).get(customer_id, (0, ZERO))
                last_payment = None

            if last_payment is None:
                last_payment = (await _latest_payments(db, tenant_id, [customer_id])).get(customer_id)

            balance = await BalanceReconciler.get_current_balance(db, tenant_id, customer_id)

        return _summary(
            customer_id, full_name, phone, balance.amount, cached, credit_limit, last_payment, unpaid
        )

    @staticmethod
    async def get_all_customers_for_ledger(
        db: AsyncSession,
        tenant_id: int,
        capabilities: LedgerCapabilities
    ) -> List[LedgerSummary]:
        """
        Summaries for every customer of the tenant.

        Customers with history (non-zero balance, a last payment or unpaid
        orders) come first, then by name. A customer whose balance cannot be
        reconciled keeps its cached balance instead of failing the list.
        """
        async with operation_failure("load customer ledgers", write=False):
            if capabilities.summary_view_available:
                result = await db.execute(select(summary_view).where(summary_view.c.user_id == tenant_id))
                rows = [
                    (
                        row.customer_id, row.full_name, row.phone, row.account_balance, row.credit_limit,
                        (row.last_payment_date, row.last_payment_amount) if row.last_payment_date else None,
                        (row.unpaid_orders_count, row.total_unpaid_amount),
                    )
                    for row in result.all()
                ]
            else:
                customers = (await db.execute(
                    select(Customer).where(Customer.user_id == tenant_id)
                )).scalars().all()
                unpaid_totals = await _unpaid_totals(db, tenant_id)
                rows = [
                    (
                        customer.id, customer.full_name, customer.phone,
                        CachedBalanceHint.from_customer(customer).amount, customer.credit_limit,
                        None, unpaid_totals.get(customer.id, (0, ZERO)),
                    )
                    for customer in customers
                ]

            without_payment = [row[0] for row in rows if row[5] is None]
            latest_payments = await _latest_payments(db, tenant_id, without_payment) if without_payment else {}

            summaries = []
            for customer_id, full_name, phone, cached, credit_limit, last_payment, unpaid in rows:
                try:
                    balance = (await BalanceReconciler.get_current_balance(db, tenant_id, customer_id)).amount
                    source = "ledger"
                except LedgerReadError as exc:
                    logger.warning(
                        "Could not reconcile customer %s (tenant %s), using cached balance: %s",
                        customer_id, tenant_id, exc.details.get("reason", exc.message)
                    )
                    balance, source = cached, "customer_hint"
                summaries.append(_summary(
                    customer_id, full_name, phone, balance, cached, credit_limit,
                    last_payment or latest_payments.get(customer_id), unpaid, source
                ))

        summaries.sort(key=lambda summary: (not summary.has_history, summary.full_name.casefold()))
        return summaries

    @staticmethod
    async def get_customers_with_balance(
        db: AsyncSession,
        tenant_id: int,
        capabilities: LedgerCapabilities
    ) -> List[LedgerSummary]:
        """Customers who owe money, highest balance first."""
        summaries = await LedgerSummaryBuilder.get_all_customers_for_ledger(db, tenant_id, capabilities)
        owing = [summary for summary in summaries if summary.account_balance > 0]
        owing.sort(key=lambda summary: summary.account_balance, reverse=True)
        return owing

    @staticmethod
    async def get_customer_ledger(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> LedgerStatement:
        """
        Statement of ledger entries, oldest first, each with its order and payment.

        date_from/date_to are inclusive bounds on transaction_date.
        """
        async with operation_failure("load ledger statement", write=False):
            customer = await LedgerStore.get_customer(db, tenant_id, customer_id)
            full_name, phone = customer.full_name, customer.phone

            stmt = (
                select(
                    CustomerLedgerEntry,
                    Order.order_number,
                    Order.order_type,
                    CustomerPayment.payment_number,
                    CustomerPayment.payment_method,
                )
                .outerjoin(Order, Order.id == CustomerLedgerEntry.order_id)
                .outerjoin(CustomerPayment, CustomerPayment.id == CustomerLedgerEntry.payment_id)
                .where(
                    CustomerLedgerEntry.customer_id == customer_id,
                    CustomerLedgerEntry.user_id == tenant_id,
                )
                .order_by(*CHAIN_ORDER)
            )
            if date_from:
                stmt = stmt.where(CustomerLedgerEntry.transaction_date >= date_from)
            if date_to:
                stmt = stmt.where(CustomerLedgerEntry.transaction_date <= date_to)
            rows = (await db.execute(stmt)).all()

            current = await BalanceReconciler.get_current_balance(db, tenant_id, customer_id)

        entries = [
            StatementEntry(
                id=entry.id,
                transaction_type=entry.transaction_type,
                amount=to_money(entry.amount),
                balance_before=to_money(entry.balance_before),
                balance_after=to_money(entry.balance_after),
                description=entry.description,
                notes=entry.notes,
                transaction_date=entry.transaction_date,
                transaction_time=entry.transaction_time,
                created_at=entry.created_at,
                order_id=entry.order_id,
                order_number=order_number,
                order_type=order_type,
                payment_id=entry.payment_id,
                payment_number=payment_number,
                payment_method=payment_method,
                is_record_only=entry.is_record_only,
            )
            for entry, order_number, order_type, payment_number, payment_method in rows
        ]
        debits = [entry.amount for entry in entries if entry.transaction_type == TransactionType.DEBIT]
        credits = [entry.amount for entry in entries if entry.transaction_type == TransactionType.CREDIT]

        return LedgerStatement(
            customer_id=customer_id,
            full_name=full_name,
            phone=phone,
            date_from=date_from,
            date_to=date_to,
            entries=entries,
            total_debits=to_money(sum(debits, ZERO)),
            total_credits=to_money(sum(credits, ZERO)),
            debit_count=len(debits),
            credit_count=len(credits),
            opening_balance=entries[0].balance_before if entries else current.amount,
            closing_balance=entries[-1].balance_after if entries else current.amount,
            current_balance=to_money(current.amount),
        )

    @staticmethod
    async def get_unpaid_orders(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        clock: Clock
    ) -> List[UnpaidOrder]:
        """Account orders still Pending/Partial, oldest first, with days outstanding."""
        async with operation_failure("load unpaid orders", write=False):
            await LedgerStore.get_customer(db, tenant_id, customer_id)
            result = await db.execute(
                select(Order)
                .where(
                    Order.user_id == tenant_id,
                    Order.customer_id == customer_id,
                    Order.payment_method == PaymentMethod.ACCOUNT,
                    Order.payment_status.in_(UNPAID_PAYMENT_STATUSES),
                )
                .order_by(Order.order_date, Order.id)
            )
            orders = result.scalars().all()

        today = clock().date()
        return [
            UnpaidOrder(
                id=order.id,
                order_number=order.order_number,
                order_type=order.order_type,
                order_date=order.order_date,
                total_amount=to_money(order.total_amount),
                amount_paid=to_money(order.amount_paid),
                amount_due=to_money(order.outstanding_amount),
                payment_status=order.payment_status.value,
                days_outstanding=max((today - order.order_date.date()).days, 0),
            )
            for order in orders
        ]

    @staticmethod
    async def search_customers(
        db: AsyncSession,
        tenant_id: int,
        term: Optional[str] = None,
        limit: int = SEARCH_LIMIT
    ) -> List[Customer]:
        """Customers whose name or phone contains term, by name, at most 20."""
        stmt = select(Customer).where(Customer.user_id == tenant_id)
        term = (term or "").strip()
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(or_(Customer.full_name.ilike(pattern), Customer.phone.ilike(pattern)))
        stmt = stmt.order_by(Customer.full_name, Customer.id).limit(min(limit, SEARCH_LIMIT))
        async with operation_failure("search customers", write=False):
            result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def check_integrity(db: AsyncSession, tenant_id: int, customer_id: int) -> IntegrityReport:
        """Walk the customer's chain and compare the cached balance with the ledger."""
        async with operation_failure("check ledger integrity", write=False):
            customer = await LedgerStore.get_customer(db, tenant_id, customer_id)
            entries = await BalanceReconciler.get_chain(db, tenant_id, customer_id)

        violations = find_chain_violations(entries)
        ledger_balance = to_money(entries[-1].balance_after) if entries else ZERO
        cached = to_money(CachedBalanceHint.from_customer(customer).amount)
        if violations:
            logger.error(
                "Ledger chain for customer %s (tenant %s) has %s violation(s)",
                customer_id, tenant_id, len(violations)
            )
        return IntegrityReport(
            customer_id=customer_id,
            entry_count=len(entries),
            ledger_balance=ledger_balance,
            cached_balance=cached,
            cached_balance_matches=cached == ledger_balance,
            violations=violations,
            is_valid=not violations and cached == ledger_balance,
        )
