"""
Customer Ledger database model.

Append-only record of every balance-affecting event for a customer.
"""

from sqlalchemy import Column, Integer, Numeric, String, Text, Date, Time, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from pos_backend.app.db.session import Base
from pos_backend.app.models.ledger_enums import TransactionType, value_enum


class CustomerLedgerEntry(Base):
    """
    Customer ledger entry.

    Invariants:
    - debit: balance_after = balance_before + amount
    - credit: balance_after = balance_before - amount
    - record-only entries keep balance_after = balance_before
    - ordered by (transaction_date, transaction_time, created_at, id), each
      balance_before equals the previous balance_after
    NO updates or deletions allowed.
    """
    __tablename__ = "customer_ledger"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    transaction_type = Column(value_enum(TransactionType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    # Linkage
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey('customer_payments.id'), nullable=True, index=True)

    description = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    transaction_date = Column(Date, nullable=False)
    transaction_time = Column(Time, nullable=False)
    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index(
            'ix_customer_ledger_chain',
            'user_id', 'customer_id', 'transaction_date', 'transaction_time', 'created_at'
        ),
    )

    @property
    def is_record_only(self) -> bool:
        return self.balance_before == self.balance_after

    def __repr__(self):
        return (
            f"<CustomerLedgerEntry(id={self.id}, type='{self.transaction_type.value}', "
            f"amount={self.amount}, after={self.balance_after})>"
        )
