"""
Staff roles enumeration.

Defines the role types for restaurant staff using the POS.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Restaurant owner, the tenant every ledger belongs to
        MANAGER: Supervises cashiers, may post manual ledger adjustments
        CASHIER: Takes orders and records payments (default role)
    """
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"
