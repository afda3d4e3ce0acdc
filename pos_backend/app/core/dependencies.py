"""
Request dependencies for FastAPI.

Resolves the acting staff member from the bearer token, the tenant whose
customers and ledgers the request operates on, and the clock used for
ledger dates.
"""

from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from pos_backend.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from pos_backend.app.core.jwt import decode_access_token
from pos_backend.app.db.session import get_db
from pos_backend.app.models.user import User

security = HTTPBearer()

Clock = Callable[[], datetime]


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Authenticate the staff member behind a request.

    The token only proves identity. Role and tenant are re-read from the
    users table on every request so a demoted or deactivated cashier loses
    access immediately, and a token cannot claim another owner's tenant.

    Returns:
        Token claims with role and tenant_id replaced by the stored values

    Raises:
        AuthenticationError: bad token or unknown user (401)
        InsufficientPermissionsError: user deactivated (403)
    """
    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise AuthenticationError("Could not validate credentials")

    user = await db.get(User, claims["user_id"])
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise InsufficientPermissionsError("User account is inactive")

    return {**claims, "tenant_id": user.effective_tenant_id, "role": user.role.value}


def get_tenant_id(current_user: dict = Depends(get_current_user)) -> int:
    """Tenant (restaurant owner) whose customers and ledgers the request operates on."""
    return current_user["tenant_id"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    """Clock used for ledger dates; tests override it to pin "today"."""
    return utc_now
