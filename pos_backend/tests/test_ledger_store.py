"""
Ledger Store Tests.

Validates the balance chain, the authority of the ledger over the cached
customer balance, and record-only entries.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select, text

from pos_backend.app.core.exceptions import CustomerNotFoundError, InvalidAmountError
from pos_backend.app.domain.ledger.balance_reconciler import (
    BalanceReconciler,
    CachedBalanceHint,
    find_chain_violations,
)
from pos_backend.app.domain.ledger.ledger_store import LedgerEntryInput, LedgerStore, validate_amount
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.ledger_enums import TransactionType


def debit(amount, description="Opening balance"):
    return LedgerEntryInput(transaction_type=TransactionType.DEBIT, amount=Decimal(amount), description=description)


def credit(amount, description="Adjustment"):
    return LedgerEntryInput(transaction_type=TransactionType.CREDIT, amount=Decimal(amount), description=description)


async def count_entries(db_session) -> int:
    result = await db_session.execute(select(func.count(CustomerLedgerEntry.id)))
    return result.scalar()


@pytest.mark.asyncio
async def test_balance_is_zero_without_history(db_session, tenant, make_customer):
    customer = await make_customer()

    balance = await BalanceReconciler.get_current_balance(db_session, tenant.id, customer.id)

    assert balance.amount == Decimal("0.00")
    assert balance.has_history is False


@pytest.mark.asyncio
async def test_chain_links_and_arithmetic(db_session, tenant, make_customer, clock):
    """Every entry starts where the previous one ended and does its own arithmetic."""
    customer = await make_customer()

    for entry in (debit("1500"), credit("500"), debit("250.50"), credit("1300")):
        clock.advance(minutes=5)
        await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, entry, clock)

    chain = await BalanceReconciler.get_chain(db_session, tenant.id, customer.id)

    assert [row.balance_after for row in chain] == [
        Decimal("1500.00"), Decimal("1000.00"), Decimal("1250.50"), Decimal("-49.50")
    ]
    assert chain[0].balance_before == Decimal("0.00")
    for previous, current in zip(chain, chain[1:]):
        assert current.balance_before == previous.balance_after
    assert find_chain_violations(chain) == []

    balance = await BalanceReconciler.get_current_balance(db_session, tenant.id, customer.id)
    assert balance.amount == Decimal("-49.50")
    assert balance.latest_entry_id == chain[-1].id


@pytest.mark.asyncio
async def test_entries_at_same_instant_chain_by_id(db_session, tenant, make_customer, clock):
    customer = await make_customer()

    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("100"), clock)
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("40"), clock)

    chain = await BalanceReconciler.get_chain(db_session, tenant.id, customer.id)
    assert chain[0].id < chain[1].id
    assert chain[1].balance_before == Decimal("100.00")
    assert chain[1].balance_after == Decimal("140.00")


@pytest.mark.asyncio
async def test_cached_balance_follows_ledger(db_session, tenant, make_customer, clock):
    customer = await make_customer()

    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("800"), clock)
    await db_session.refresh(customer)

    assert customer.account_balance == Decimal("800.00")
    assert CachedBalanceHint.from_customer(customer).amount == Decimal("800.00")


@pytest.mark.asyncio
async def test_ledger_wins_over_corrupted_cache(db_session, tenant, make_customer, clock):
    """A wrong customers.account_balance never leaks into the computed balance."""
    customer = await make_customer()
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("300"), clock)

    await db_session.execute(
        text("UPDATE customers SET account_balance = 9999 WHERE id = :id"), {"id": customer.id}
    )
    await db_session.commit()

    balance = await BalanceReconciler.get_current_balance(db_session, tenant.id, customer.id)
    assert balance.amount == Decimal("300.00")

    # The next entry also starts from the ledger, not the cache
    clock.advance(minutes=1)
    entry = await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, credit("100"), clock)
    assert entry.balance_before == Decimal("300.00")
    assert entry.balance_after == Decimal("200.00")


@pytest.mark.asyncio
async def test_record_only_entries_keep_balance(db_session, tenant, make_customer, make_order, clock):
    customer = await make_customer()
    order = await make_order(customer=customer, total="600")
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("600"), clock)
    await db_session.refresh(customer)
    cached_before = customer.account_balance
    version_before = customer.ledger_version

    for _ in range(3):
        clock.advance(minutes=1)
        entry = await LedgerStore.create_ledger_entry_without_balance_update(
            db_session,
            tenant.id,
            customer.id,
            LedgerEntryInput(
                transaction_type=TransactionType.CREDIT,
                amount=Decimal("200"),
                description="Applied to order",
                order_id=order.id,
            ),
            clock,
        )
        assert entry.balance_before == entry.balance_after == Decimal("600.00")
        assert entry.is_record_only

    balance = await BalanceReconciler.get_current_balance(db_session, tenant.id, customer.id)
    assert balance.amount == Decimal("600.00")
    await db_session.refresh(customer)
    assert customer.account_balance == cached_before == Decimal("600.00")
    assert customer.ledger_version > version_before


@pytest.mark.asyncio
async def test_record_only_entry_leaves_drifted_cache_alone(db_session, tenant, make_customer, clock):
    """Only balance-affecting entries and reconcile write the cached balance."""
    customer = await make_customer()
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("300"), clock)
    await db_session.execute(
        text("UPDATE customers SET account_balance = 9999 WHERE id = :id"), {"id": customer.id}
    )
    await db_session.commit()

    clock.advance(minutes=1)
    entry = await LedgerStore.create_ledger_entry_without_balance_update(
        db_session, tenant.id, customer.id, credit("50"), clock
    )

    assert entry.balance_before == entry.balance_after == Decimal("300.00")
    await db_session.refresh(customer)
    assert customer.account_balance == Decimal("9999.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-10", "0.001"])
async def test_non_positive_amount_rejected_before_write(db_session, tenant, make_customer, clock, amount):
    customer = await make_customer()

    with pytest.raises(InvalidAmountError):
        await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit(amount), clock)

    assert await count_entries(db_session) == 0


def test_validate_amount_rounds_to_cents():
    assert validate_amount("12.345") == Decimal("12.35")
    assert validate_amount(7) == Decimal("7.00")
    with pytest.raises(InvalidAmountError):
        validate_amount("abc")


@pytest.mark.asyncio
async def test_customer_of_another_tenant_is_not_found(db_session, tenant, other_tenant, make_customer, clock):
    customer = await make_customer(owner=other_tenant)

    with pytest.raises(CustomerNotFoundError) as exc_info:
        await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("10"), clock)

    assert exc_info.value.operation == "post ledger entry"
    assert exc_info.value.user_message.startswith("Failed to post ledger entry:")
    assert await count_entries(db_session) == 0


@pytest.mark.asyncio
async def test_chain_violations_are_reported(db_session, tenant, make_customer, clock):
    customer = await make_customer()
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("100"), clock)

    # Broken link written outside the store
    clock.advance(minutes=1)
    now = clock()
    db_session.add(CustomerLedgerEntry(
        customer_id=customer.id,
        user_id=tenant.id,
        transaction_type=TransactionType.DEBIT,
        amount=Decimal("50"),
        balance_before=Decimal("90"),
        balance_after=Decimal("150"),
        description="Tampered",
        transaction_date=now.date(),
        transaction_time=now.time(),
        created_at=now,
    ))
    await db_session.commit()

    chain = await BalanceReconciler.get_chain(db_session, tenant.id, customer.id)
    violations = find_chain_violations(chain)

    assert [violation.kind for violation in violations] == ["chain", "arithmetic"]
    assert violations[0].expected == Decimal("100.00")
    assert violations[1].expected == Decimal("140.00")


@pytest.mark.asyncio
async def test_reconcile_rewrites_cached_balance(db_session, tenant, make_customer, clock):
    customer = await make_customer()
    await LedgerStore.create_ledger_entry(db_session, tenant.id, customer.id, debit("450"), clock)
    await db_session.execute(
        text("UPDATE customers SET account_balance = 0 WHERE id = :id"), {"id": customer.id}
    )
    await db_session.commit()

    previous, current = await LedgerStore.reconcile_cached_balance(db_session, tenant.id, customer.id, clock)

    assert previous == Decimal("0.00")
    assert current == Decimal("450.00")
    await db_session.refresh(customer)
    assert customer.account_balance == Decimal("450.00")
