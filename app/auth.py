"""
Bearer token decoding into an explicit acting party.

Tokens are issued elsewhere; this service only verifies the signature and
reads the `sub` (user id) and `role` claims.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY
from .shared.validators import utc_now

logger = logging.getLogger(__name__)

security = HTTPBearer()

PARTY_ROLES = ("client", "companion")


@dataclass(frozen=True)
class ActingParty:
    """Who is performing an operation, passed explicitly to every service call"""

    id: int
    role: str

    @property
    def is_client(self) -> bool:
        return self.role == "client"

    @property
    def is_companion(self) -> bool:
        return self.role == "companion"


def create_access_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed token for a party (used by tests and local tooling)"""
    expire = utc_now() + (expires_delta or timedelta(hours=1))
    to_encode: dict[str, Any] = {"sub": str(user_id), "role": role, "exp": expire}
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> ActingParty:
    """
    Verify a token and build the acting party from its claims.

    Raises:
        HTTPException: 401 if the token is invalid, expired or lacks claims
    """
    try:
        payload = jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e

    role = payload.get("role")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=401, detail="Invalid token claims") from e

    if role not in PARTY_ROLES:
        raise HTTPException(status_code=401, detail="Invalid token claims")

    return ActingParty(id=user_id, role=role)


async def get_acting_party(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> ActingParty:
    """Resolve the acting party from the Authorization header"""
    return decode_access_token(credentials.credentials)
