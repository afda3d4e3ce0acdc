"""
Order database model (ledger-relevant subset).

Order entry itself lives in the POS client; this backend reads and updates
the payment and status columns the ledger and payment flows depend on.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, Numeric, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from pos_backend.app.db.session import Base
from pos_backend.app.models.ledger_enums import OrderStatus, PaymentMethod, PaymentStatus, value_enum


class Order(Base):
    """
    Order model.

    Two orthogonal state machines:
    - payment_status: Pending/Partial -> Paid (or Refunded)
    - order_status: Pending -> Preparing -> Ready -> Completed, * -> Cancelled
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True, index=True)

    order_number = Column(String(50), nullable=False, index=True)
    order_type = Column(String(30), nullable=True)  # walkin, takeaway, delivery
    order_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Financials
    subtotal = Column(Numeric(12, 2), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    loyalty_discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    delivery_charges = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    amount_due = Column(Numeric(12, 2), nullable=True)

    payment_method = Column(value_enum(PaymentMethod), nullable=True)
    payment_status = Column(value_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    order_status = Column(value_enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    cancellation_reason = Column(Text, nullable=True)
    modified_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def outstanding_amount(self) -> Decimal:
        """amount_due when recorded, otherwise total minus what was paid."""
        if self.amount_due is not None:
            return self.amount_due
        return (self.total_amount or Decimal("0")) - (self.amount_paid or Decimal("0"))

    @property
    def pricing_subtotal(self) -> Decimal:
        return self.subtotal if self.subtotal is not None else self.total_amount

    def __repr__(self):
        return (
            f"<Order(id={self.id}, number='{self.order_number}', "
            f"payment='{self.payment_status.value}', status='{self.order_status.value}')>"
        )
