"""Access token helpers — issuing and decoding HS256 bearer tokens.

Tokens are minted by the identity gateway in front of this service; the
encoder here is used by internal tooling and the test-suite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt

from leave_engine.common.constants import UserRole
from leave_engine.config import settings


def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole,
    *,
    expires_in: Optional[timedelta] = None,
) -> str:
    expires_in = expires_in or timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "role": UserRole(role).value,
        "type": "access",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify signature and expiry; raises jose.JWTError subclasses."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
