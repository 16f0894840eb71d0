"""Client-side access token plausibility checks.

Nothing here verifies a signature. The backend remains the only authority on
whether a token is genuine; these checks only spare a round trip for tokens
that are obviously malformed or already expired.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ("sub", "exp")


def decode_claims(token: str) -> dict[str, Any] | None:
    """Decode the payload segment of a JWT without verifying it."""
    if not token or token.count(".") != 2:
        return None
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.InvalidTokenError as e:
        logger.debug("token payload could not be decoded: %s", e)
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def is_access_token_structurally_valid(token: str, now: float | None = None) -> bool:
    """Return True when ``token`` looks like a live access token."""
    claims = decode_claims(token)
    if claims is None:
        return False
    missing = [c for c in _REQUIRED_CLAIMS if c not in claims]
    if missing:
        logger.debug("token rejected: missing claims %s", missing)
        return False
    token_type = claims.get("type")
    if token_type is not None and token_type != "access":
        logger.debug("token rejected: type claim is %r", token_type)
        return False
    exp = claims["exp"]
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return False
    current = time.time() if now is None else now
    if exp <= current:
        logger.debug("token rejected: expired at %s", exp)
        return False
    return True
