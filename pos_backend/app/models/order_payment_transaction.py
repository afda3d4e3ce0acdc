"""
Order Payment Transaction database model.

One row per payment method used within a split payment; the legs of one
order sum to the order total.
"""

from sqlalchemy import Column, Integer, Numeric, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from pos_backend.app.db.session import Base
from pos_backend.app.models.ledger_enums import PaymentMethod, value_enum


class OrderPaymentTransaction(Base):
    __tablename__ = "order_payment_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    payment_method = Column(value_enum(PaymentMethod), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<OrderPaymentTransaction(order_id={self.order_id}, method='{self.payment_method.value}', amount={self.amount})>"
