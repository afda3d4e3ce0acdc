"""
Role guards for ledger endpoints.

Cashiers can take payments and read ledgers; only managers and admins may
post manual entries, reconcile cached balances or read the audit trail.
"""

from typing import Iterable
from fastapi import Depends
from pos_backend.app.models.enums import UserRole
from pos_backend.app.core.dependencies import get_current_user
from pos_backend.app.core.exceptions import InsufficientPermissionsError

LEDGER_ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})

ALL_STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.CASHIER})


def require_role(allowed_roles: Iterable[UserRole]):
    """
    Dependency factory rejecting staff whose stored role is not allowed.

    Usage:
        @router.post("/ledger/customers/{customer_id}/entries")
        async def post_entry(current_user: dict = Depends(require_role(LEDGER_ADMIN_ROLES))):
            ...
    """
    allowed = {role.value for role in allowed_roles}
    required = ", ".join(sorted(allowed))

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user["role"] not in allowed:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {required}",
                details={"role": current_user["role"]}
            )
        return current_user

    return role_checker
