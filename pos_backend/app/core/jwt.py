"""
Staff access tokens.

A token names the acting staff member and the tenant (restaurant owner)
whose customers and ledgers the request may touch. Claims: sub (username),
user_id, tenant_id, role and exp.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from pos_backend.app.core.config import settings

REQUIRED_CLAIMS = ("sub", "user_id", "tenant_id", "role")


def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for one till session; lifetime defaults to the configured shift length."""
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {**claims, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry.

    Returns:
        The claims, or None when the token is invalid, expired or is missing
        one of REQUIRED_CLAIMS
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if any(payload.get(claim) is None for claim in REQUIRED_CLAIMS):
        return None
    return payload
