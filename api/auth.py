"""Token authentication for the budget tracker API."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from flask import request

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_COOKIE = "token"
DEFAULT_TOKEN_TTL = timedelta(days=1)


def issue_token(user_id: str, secret: str, expires_in: timedelta = DEFAULT_TOKEN_TTL) -> str:
    now = datetime.now(timezone.utc)
    payload = {"user_id": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[str]:
    """Return the user id carried by ``token``, or ``None`` if it is unusable."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Rejected expired token")
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected invalid token: %s", exc)
        return None
    user_id = payload.get("user_id")
    return str(user_id) if user_id else None


def current_user_id(secret: str) -> Optional[str]:
    """Identify the caller of the current request.

    The token is read from an ``Authorization: Bearer`` header, falling back
    to the ``token`` cookie.
    """
    token = request.cookies.get(TOKEN_COOKIE)
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        token = header[len("bearer "):].strip()
    if not token:
        return None
    return decode_token(token, secret)
