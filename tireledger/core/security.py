"""
Bearer token verification

Tokens are issued by the storefront's authentication service; this backend
only reads them. Claims: sub (customer id), type ("access"), optional email
and name, and is_admin for inventory and order-status operations.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from tireledger.core.config import settings

ACCESS_TOKEN_TYPE = "access"
ACCESS_TOKEN_EXPIRE_MINUTES = 30


def create_access_token(
    user_id: int,
    email: Optional[str] = None,
    name: Optional[str] = None,
    is_admin: bool = False,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Sign a token with the claims this backend reads. Used by tooling and tests."""
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "type": ACCESS_TOKEN_TYPE,
        "is_admin": is_admin,
        "iat": issued,
        "exp": issued + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
        "jti": uuid.uuid4().hex,
    }
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Verified claims, or None for a bad signature, expired or malformed token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
