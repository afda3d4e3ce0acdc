"""
Concurrency Tests.

Validates that concurrent ledger writes for one customer serialize, that a
stale customer version is detected, and that conflicts are retried.
"""

import asyncio
import gc
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from pos_backend.app.core.config import settings
from pos_backend.app.core.exceptions import ConcurrentModificationError
from pos_backend.app.core.reliability import retry_on_conflict
from pos_backend.app.domain.ledger.balance_reconciler import BalanceReconciler, find_chain_violations
from pos_backend.app.domain.ledger.ledger_store import (
    CustomerLockRegistry,
    LedgerEntryInput,
    LedgerStore,
    customer_locks,
)
from pos_backend.app.domain.ledger.order_debit import OrderDebitPoster
from pos_backend.app.domain.ledger.payment_recorder import PaymentInput, PaymentRecorder
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.ledger_enums import TransactionType


def debit(amount):
    return LedgerEntryInput(transaction_type=TransactionType.DEBIT, amount=Decimal(amount), description="Charge")


@pytest.mark.asyncio
async def test_concurrent_payments_keep_chain_intact(session_factory, db_session, tenant, make_customer, clock):
    """Four payments fired together: every entry links to the one before it."""
    customer = await make_customer()
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("1000"), clock)

    async def pay(amount):
        async with session_factory() as session:
            return await PaymentRecorder.record_payment(
                session, tenant.id, customer.id, PaymentInput(amount=Decimal(amount)), tenant.cashier.id, clock
            )

    results = await asyncio.gather(*(pay(amount) for amount in ("100", "200", "300", "150")))

    chain = await BalanceReconciler.get_chain(db_session, tenant.id, customer.id)
    assert len(chain) == 5
    assert find_chain_violations(chain) == []

    balance = await BalanceReconciler.get_current_balance(db_session, tenant.id, customer.id)
    assert balance.amount == Decimal("250.00")

    numbers = sorted(result.payment.payment_number for result in results)
    assert numbers == ["PAY-000001", "PAY-000002", "PAY-000003", "PAY-000004"]

    await db_session.refresh(customer)
    assert customer.account_balance == Decimal("250.00")


@pytest.mark.asyncio
async def test_concurrent_order_debits_bill_once(session_factory, db_session, tenant, make_customer, make_order, clock):
    customer = await make_customer()
    order = await make_order(customer=customer, total="640")

    async def bill():
        async with session_factory() as session:
            return await OrderDebitPoster.post_order_debit(session, tenant.id, order.id, tenant.cashier.id, clock)

    results = await asyncio.gather(bill(), bill(), bill())

    assert sorted(result.created for result in results) == [False, False, True]
    count = (await db_session.execute(select(func.count(CustomerLedgerEntry.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_stale_customer_version_is_a_conflict(session_factory, db_session, tenant, make_customer, clock):
    """A writer holding an outdated customer row must not overwrite the newer balance."""
    customer = await make_customer()

    async with session_factory() as stale_session, session_factory() as fresh_session:
        stale = await LedgerStore.get_customer(stale_session, tenant.id, customer.id)

        await LedgerStore.create_ledger_entry(fresh_session, tenant.id, customer.id, debit("100"), clock)

        with pytest.raises(ConcurrentModificationError):
            await LedgerStore.append_entry(stale_session, stale, debit("50"), clock())
        await stale_session.rollback()

    chain = await BalanceReconciler.get_chain(db_session, tenant.id, customer.id)
    assert [row.balance_after for row in chain] == [Decimal("100.00")]


@pytest.mark.asyncio
async def test_conflict_is_retried_with_fresh_read(db_session, tenant, make_customer, clock):
    customer = await make_customer()
    attempts = []

    async def work(locked_customer):
        attempts.append(locked_customer.id)
        if len(attempts) == 1:
            raise ConcurrentModificationError(locked_customer.id)
        return await LedgerStore.append_entry(db_session, locked_customer, debit("75"), clock())

    entry = await LedgerStore.run_locked(db_session, tenant.id, customer.id, work, operation="post ledger entry")

    assert len(attempts) == 2
    assert entry.balance_after == Decimal("75.00")


@pytest.mark.asyncio
async def test_conflict_surfaces_after_max_attempts(db_session, tenant, make_customer):
    customer = await make_customer()
    attempts = []

    async def work(locked_customer):
        attempts.append(locked_customer.id)
        raise ConcurrentModificationError(locked_customer.id)

    with pytest.raises(ConcurrentModificationError) as exc_info:
        await LedgerStore.run_locked(db_session, tenant.id, customer.id, work, operation="record payment")

    assert len(attempts) == settings.ledger_write_max_attempts
    assert exc_info.value.status_code == 409
    assert exc_info.value.user_message.startswith("Failed to record payment:")


@pytest.mark.asyncio
async def test_retry_on_conflict_runs_cleanup_between_attempts():
    calls = []

    async def attempt():
        calls.append("attempt")
        if calls.count("attempt") < 3:
            raise ConcurrentModificationError(7)
        return "done"

    async def rollback():
        calls.append("rollback")

    result = await retry_on_conflict(attempt, max_attempts=3, on_conflict=rollback)

    assert result == "done"
    assert calls == ["attempt", "rollback", "attempt", "rollback", "attempt"]


def test_lock_registry_is_per_tenant_and_customer():
    registry = CustomerLockRegistry()
    lock = registry.lock_for(1, 5)

    assert registry.lock_for(1, 5) is lock
    assert registry.lock_for(2, 5) is not lock
    assert registry.lock_for(1, 6) is not lock


@pytest.mark.asyncio
async def test_lock_registry_drops_released_locks():
    registry = CustomerLockRegistry()

    for customer_id in range(50):
        async with registry.lock_for(1, customer_id):
            assert registry.lock_for(1, customer_id).locked()
    gc.collect()

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_ledger_writes_leave_no_locks_behind(db_session, tenant, make_customer, clock):
    customers = [await make_customer(full_name=f"Customer {n}") for n in range(3)]
    for customer in customers:
        await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("10"), clock)
    gc.collect()

    assert len(customer_locks) == 0
