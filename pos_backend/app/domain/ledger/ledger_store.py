"""
Ledger Store (Domain Logic).

The only writer of customer_ledger rows and of customers.account_balance.

Every write runs as one unit of work:
1. Acquire the in-process lock for (tenant, customer)
2. Lock the customer row (SELECT ... FOR UPDATE where supported)
3. Read the authoritative balance from the ledger
4. Insert the entry; balance-affecting entries also update the cached
   balance (the customer version is bumped either way)
5. Commit

A stale customer version raises ConcurrentModificationError and the whole
unit is re-run with a fresh read.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from pos_backend.app.core.config import settings
from pos_backend.app.core.dependencies import Clock
from pos_backend.app.core.exceptions import (
    ConcurrentModificationError,
    CustomerNotFoundError,
    InvalidAmountError,
    operation_failure,
)
from pos_backend.app.core.reliability import retry_on_conflict
from pos_backend.app.domain.ledger.balance_reconciler import BalanceReconciler, apply_entry
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.ledger_enums import TransactionType

logger = logging.getLogger("pos_ledger.ledger")

T = TypeVar("T")

CENT = Decimal("0.01")


class CustomerLockRegistry:
    """
    One asyncio.Lock per (tenant, customer) so ledger writes for a customer never interleave.

    Locks are held weakly: a lock lives while a writer holds or waits on it
    and is dropped afterwards, so the registry only tracks customers with a
    write in flight.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()  # (tenant_id, customer_id) -> asyncio.Lock

    def lock_for(self, tenant_id: int, customer_id: int) -> asyncio.Lock:
        key = (tenant_id, customer_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)

    def clear(self):
        self._locks.clear()


customer_locks = CustomerLockRegistry()


@dataclass
class LedgerEntryInput:
    """What to post. Balances are computed by the store."""
    transaction_type: TransactionType
    amount: Decimal
    description: str
    order_id: Optional[int] = None
    payment_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None


def validate_amount(amount, field: str = "amount") -> Decimal:
    """Positive amount rounded to cents, InvalidAmountError otherwise."""
    try:
        value = Decimal(str(amount)).quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"{field} must be a number", details={field: str(amount)})
    if value <= 0:
        raise InvalidAmountError(details={field: str(amount)})
    return value


class LedgerStore:

    @staticmethod
    async def get_customer(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        for_update: bool = False
    ) -> Customer:
        """Load a customer scoped to the tenant, optionally locking the row."""
        stmt = select(Customer).where(Customer.id == customer_id, Customer.user_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        customer = result.scalar_one_or_none()
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    @staticmethod
    async def append_entry(
        db: AsyncSession,
        customer: Customer,
        entry: LedgerEntryInput,
        now: datetime,
        update_balance: bool = True
    ) -> CustomerLedgerEntry:
        """
        Insert one entry for an already locked customer and flush.

        Does not commit; callers run this inside run_locked so the entry
        commits together with whatever else the unit of work wrote.

        Args:
            update_balance: False records the entry at the current balance
                (balance_before == balance_after) without moving it
        """
        amount = validate_amount(entry.amount)
        current = await BalanceReconciler.get_current_balance(db, customer.user_id, customer.id)

        balance_before = current.amount
        if update_balance:
            balance_after = apply_entry(balance_before, entry.transaction_type, amount)
        else:
            balance_after = balance_before

        row = CustomerLedgerEntry(
            customer_id=customer.id,
            user_id=customer.user_id,
            transaction_type=entry.transaction_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            order_id=entry.order_id,
            payment_id=entry.payment_id,
            description=entry.description,
            notes=entry.notes,
            created_by=entry.created_by,
            transaction_date=now.date(),
            transaction_time=now.time(),
            created_at=now,
        )
        db.add(row)

        # Touch the customer row so its version moves with every entry;
        # record-only entries leave the cached balance as it is
        if update_balance:
            customer._account_balance = balance_after
        customer.updated_at = now

        try:
            await db.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError(customer.id) from exc

        logger.info(
            "Ledger %s %s for customer %s (tenant %s): %s -> %s",
            entry.transaction_type.value, amount, customer.id, customer.user_id, balance_before, balance_after
        )
        return row

    @staticmethod
    async def run_locked(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        work: Callable[[Customer], Awaitable[T]],
        operation: str
    ) -> T:
        """
        Run a ledger unit of work for one customer and commit it.

        The customer row is re-read (FOR UPDATE) on every attempt, so a retry
        after a conflict always starts from fresh state.

        Raises:
            ConcurrentModificationError: If every attempt conflicted
            LedgerWriteError / OfflineUnavailableError: On storage failure
        """
        async def attempt() -> T:
            customer = await LedgerStore.get_customer(db, tenant_id, customer_id, for_update=True)
            result = await work(customer)
            try:
                await db.commit()
            except StaleDataError as exc:
                raise ConcurrentModificationError(customer_id) from exc
            return result

        async with operation_failure(operation):
            async with customer_locks.lock_for(tenant_id, customer_id):
                try:
                    return await retry_on_conflict(
                        attempt,
                        max_attempts=settings.ledger_write_max_attempts,
                        on_conflict=db.rollback,
                    )
                except Exception:
                    await db.rollback()
                    raise

    @staticmethod
    async def create_ledger_entry(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        entry: LedgerEntryInput,
        clock: Clock
    ) -> CustomerLedgerEntry:
        """Post a balance-affecting entry and move the customer's balance."""
        validate_amount(entry.amount)

        async def work(customer: Customer) -> CustomerLedgerEntry:
            return await LedgerStore.append_entry(db, customer, entry, clock())

        return await LedgerStore.run_locked(db, tenant_id, customer_id, work, operation="post ledger entry")

    @staticmethod
    async def create_ledger_entry_without_balance_update(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        entry: LedgerEntryInput,
        clock: Clock
    ) -> CustomerLedgerEntry:
        """
        Record an entry at the current ledger balance without moving it.

        Used when money is applied to an order whose debit is already on the
        ledger, so the net balance must not change a second time.
        """
        validate_amount(entry.amount)

        async def work(customer: Customer) -> CustomerLedgerEntry:
            return await LedgerStore.append_entry(db, customer, entry, clock(), update_balance=False)

        return await LedgerStore.run_locked(db, tenant_id, customer_id, work, operation="record ledger entry")

    @staticmethod
    async def reconcile_cached_balance(
        db: AsyncSession,
        tenant_id: int,
        customer_id: int,
        clock: Clock
    ) -> Tuple[Decimal, Decimal]:
        """
        Rewrite customers.account_balance from the ledger.

        Returns:
            (previous cached balance, authoritative balance)
        """
        async def work(customer: Customer) -> Tuple[Decimal, Decimal]:
            previous = customer.account_balance
            current = await BalanceReconciler.get_current_balance(db, tenant_id, customer_id)
            if current.amount != previous:
                customer._account_balance = current.amount
                customer.updated_at = clock()
                logger.warning(
                    "Cached balance for customer %s (tenant %s) drifted: %s -> %s",
                    customer_id, tenant_id, previous, current.amount
                )
            return previous, current.amount

        return await LedgerStore.run_locked(db, tenant_id, customer_id, work, operation="reconcile balance")
