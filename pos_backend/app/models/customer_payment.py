"""
Customer Payment database model.

A receipt of funds from a customer, independent of which orders it settles.
Immutable once written; corrections are new ledger entries.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, Numeric, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from pos_backend.app.db.session import Base
from pos_backend.app.models.ledger_enums import PaymentMethod, value_enum


class CustomerPayment(Base):
    """Payment received against a customer account."""
    __tablename__ = "customer_payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)

    # Human-readable sequence per tenant, e.g. PAY-000042
    payment_number = Column(String(20), nullable=False)

    amount_received = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(value_enum(PaymentMethod), nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    received_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Flat-balance design: the whole amount is settled against the balance
    amount_settled = Column(Numeric(12, 2), nullable=False)
    amount_unapplied = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'payment_number', name='uq_customer_payments_number'),
    )

    def __repr__(self):
        return f"<CustomerPayment(id={self.id}, number='{self.payment_number}', amount={self.amount_received})>"
