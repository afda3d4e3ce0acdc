"""
Customer database model.

Identity plus billing profile. The account_balance column is a cache of the
latest ledger entry's balance_after; it is mapped to a private attribute and
only the ledger store writes it.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from pos_backend.app.db.session import Base


class Customer(Base):
    """
    Customer model.

    Balance semantics: positive = customer owes the restaurant,
    negative = credit available (advance payment).
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant (restaurant owner)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    full_name = Column(String(150), nullable=False)
    phone = Column(String(30), nullable=True, index=True)

    # Maximum debit balance allowed; 0 = no limit
    credit_limit = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Denormalized cache, written only by the ledger store
    _account_balance = Column("account_balance", Numeric(12, 2), nullable=False, default=Decimal("0"))

    last_payment_date = Column(Date, nullable=True)
    last_payment_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Optimistic concurrency token, bumped by every UPDATE of this row
    ledger_version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'phone', name='uq_customers_tenant_phone'),
    )

    __mapper_args__ = {
        "version_id_col": ledger_version,
    }

    @property
    def account_balance(self) -> Decimal:
        """Cached balance. Advisory only; the ledger is authoritative."""
        return self._account_balance if self._account_balance is not None else Decimal("0")

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.full_name}', balance={self._account_balance})>"
