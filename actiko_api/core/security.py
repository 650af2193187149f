from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from actiko_api.core.config import settings

JWT_ISSUER = "actiko"
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = 15


def create_access_token(*, user_id: str, expires_delta: timedelta | None = None) -> str:
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "iss": JWT_ISSUER,
        "sub": user_id,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_MINUTES))).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[JWT_ALGORITHM],
        issuer=JWT_ISSUER,
    )
