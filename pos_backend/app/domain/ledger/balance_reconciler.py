"""
Balance Reconciler (Domain Logic).

The ledger is the only source of truth for a customer's balance: the current
balance is the balance_after of the most recent entry. The customer row's
account_balance is a cache and is only ever surfaced as a hint.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backend.app.core.exceptions import LedgerReadError
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.ledger_enums import TransactionType
from pos_backend.app.schemas.ledger import ChainViolation

ZERO = Decimal("0.00")

# Chronological order of a customer's ledger; id breaks exact ties
CHAIN_ORDER = (
    CustomerLedgerEntry.transaction_date,
    CustomerLedgerEntry.transaction_time,
    CustomerLedgerEntry.created_at,
    CustomerLedgerEntry.id,
)


@dataclass(frozen=True)
class AuthoritativeBalance:
    """Balance derived from the latest ledger entry."""
    customer_id: int
    amount: Decimal
    latest_entry_id: Optional[int] = None

    @property
    def has_history(self) -> bool:
        return self.latest_entry_id is not None


@dataclass(frozen=True)
class CachedBalanceHint:
    """The denormalized customers.account_balance value. Advisory only."""
    customer_id: int
    amount: Decimal

    @classmethod
    def from_customer(cls, customer: Customer) -> "CachedBalanceHint":
        return cls(customer_id=customer.id, amount=customer.account_balance)


def apply_entry(balance_before: Decimal, transaction_type: TransactionType, amount: Decimal) -> Decimal:
    """Debits raise what the customer owes, credits lower it."""
    if transaction_type == TransactionType.DEBIT:
        return balance_before + amount
    return balance_before - amount


def find_chain_violations(entries: Iterable[CustomerLedgerEntry]) -> List[ChainViolation]:
    """
    Walk entries in chain order and report broken links and bad arithmetic.

    Record-only entries (balance_before == balance_after) carry no arithmetic
    obligation; they must still link to the previous entry.
    """
    violations = []
    previous_after = None
    for entry in entries:
        if previous_after is not None and entry.balance_before != previous_after:
            violations.append(ChainViolation(
                entry_id=entry.id, kind="chain", expected=previous_after, actual=entry.balance_before
            ))
        if not entry.is_record_only:
            expected_after = apply_entry(entry.balance_before, entry.transaction_type, entry.amount)
            if entry.balance_after != expected_after:
                violations.append(ChainViolation(
                    entry_id=entry.id, kind="arithmetic", expected=expected_after, actual=entry.balance_after
                ))
        previous_after = entry.balance_after
    return violations


class BalanceReconciler:

    @staticmethod
    async def get_current_balance(db: AsyncSession, tenant_id: int, customer_id: int) -> AuthoritativeBalance:
        """
        Authoritative balance for a customer.

        Reads the most recent ledger entry (date, time, created_at, id, all
        descending) and returns its balance_after, or 0 when the customer has
        never transacted. Pure read.

        Raises:
            LedgerReadError: If the ledger could not be read
        """
        stmt = (
            select(CustomerLedgerEntry.id, CustomerLedgerEntry.balance_after)
            .where(
                CustomerLedgerEntry.customer_id == customer_id,
                CustomerLedgerEntry.user_id == tenant_id,
            )
            .order_by(*[column.desc() for column in CHAIN_ORDER])
            .limit(1)
        )
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            raise LedgerReadError(
                details={"customer_id": customer_id, "reason": str(exc)}
            ) from exc

        latest = result.first()
        if latest is None:
            return AuthoritativeBalance(customer_id=customer_id, amount=ZERO)
        return AuthoritativeBalance(
            customer_id=customer_id,
            amount=latest.balance_after,
            latest_entry_id=latest.id,
        )

    @staticmethod
    async def get_chain(db: AsyncSession, tenant_id: int, customer_id: int) -> List[CustomerLedgerEntry]:
        """All entries of a customer in chain order."""
        result = await db.execute(
            select(CustomerLedgerEntry)
            .where(
                CustomerLedgerEntry.customer_id == customer_id,
                CustomerLedgerEntry.user_id == tenant_id,
            )
            .order_by(*CHAIN_ORDER)
        )
        return list(result.scalars().all())
