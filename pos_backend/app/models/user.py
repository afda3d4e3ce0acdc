"""
User database model.

Staff accounts. A tenant is the restaurant owner (an ADMIN whose tenant_id is
empty); managers and cashiers point at their owner through tenant_id.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from pos_backend.app.db.session import Base
from pos_backend.app.models.enums import UserRole


class User(Base):
    """Staff member who can act on customer ledgers."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(150), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.CASHIER, nullable=False)

    # Owner this staff member works for (None for the owner itself)
    tenant_id = Column(Integer, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def effective_tenant_id(self) -> int:
        return self.tenant_id or self.id

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role='{self.role.value}')>"
