"""Single-flight access token refresh.

Only one refresh round trip may be outstanding per client. The first caller
creates the refresh task synchronously, before any ``await``, so every caller
arriving while it runs attaches to the same task and observes the same
RefreshResult. Waiters await the task through ``asyncio.shield``, so a caller
that gives up does not cancel the refresh for everyone else.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from .exceptions import CrudifyError
from .logger import mask_secret
from .models import RefreshResult, Urgency
from .response import extract_token_payload, format_response
from .token_store import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 900
DEFAULT_REFRESH_EXPIRES_IN = 604800

RefreshSender = Callable[[str], Awaitable[Any]]
Invalidator = Callable[[str], Awaitable[None]]


def token_lifetimes(payload: Mapping[str, Any]) -> tuple[int, int]:
    """Return ``(expiresIn, refreshExpiresIn)`` seconds of a login/refresh payload.

    Missing or zero values fall back to the defaults.

    Raises:
        ValueError: a lifetime is present but not a number.
    """
    try:
        return (
            int(payload.get("expiresIn") or DEFAULT_EXPIRES_IN),
            int(payload.get("refreshExpiresIn") or DEFAULT_REFRESH_EXPIRES_IN),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid token lifetime in response: {e}") from e


class RefreshState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """Serializes refresh attempts into one in-flight operation.

    Args:
        store: token store updated on success and cleared on failure
        send: sends the refresh mutation for a refresh token, returns the raw body
        invalidate: called after a failed refresh has cleared the store
    """

    def __init__(self, store: TokenStore, send: RefreshSender, invalidate: Invalidator) -> None:
        self._store = store
        self._send = send
        self._invalidate = invalidate
        self._in_flight: asyncio.Task[RefreshResult] | None = None
        self.round_trips = 0

    @property
    def state(self) -> RefreshState:
        return RefreshState.IDLE if self._in_flight is None else RefreshState.REFRESHING

    async def refresh(self, force: bool = False) -> RefreshResult:
        """Refresh the access token, or join the refresh already running.

        Without ``force`` a token that is no longer expiring (another cycle
        already renewed it) short-circuits to success without a round trip.
        """
        if self._in_flight is None:
            refresh_token = self._store.refresh_token
            if not refresh_token:
                return RefreshResult.failed("NO_REFRESH_TOKEN_AVAILABLE")
            if self._store.is_refresh_expired():
                return RefreshResult.failed("REFRESH_TOKEN_EXPIRED")
            if not force and not self._store.is_access_expiring(Urgency.CRITICAL):
                return RefreshResult.ok(self._store.snapshot())
            self._in_flight = asyncio.get_running_loop().create_task(self._run(refresh_token))
        return await asyncio.shield(self._in_flight)

    async def _run(self, refresh_token: str) -> RefreshResult:
        try:
            return await self._perform(refresh_token)
        finally:
            self._in_flight = None

    async def _perform(self, refresh_token: str) -> RefreshResult:
        self.round_trips += 1
        logger.debug("refreshing access token (refresh_token=%s)", mask_secret(refresh_token))
        try:
            raw = await self._send(refresh_token)
        except CrudifyError as e:
            replaced = self._replaced_session(refresh_token)
            if replaced is not None:
                return replaced
            return await self._fail("TOKEN_REFRESH_FAILED", str(e))

        replaced = self._replaced_session(refresh_token)
        if replaced is not None:
            return replaced

        payload = extract_token_payload(format_response(raw))
        if payload is None:
            return await self._fail("TOKEN_REFRESH_FAILED", "response carried no token")
        try:
            expires_in, refresh_expires_in = token_lifetimes(payload)
        except ValueError as e:
            return await self._fail("TOKEN_REFRESH_FAILED", str(e))

        now = self._store.now()
        kept = self._store.set(
            access_token=str(payload["token"]),
            refresh_token=str(payload.get("refreshToken") or refresh_token),
            access_expires_at=now + expires_in * 1000,
            refresh_expires_at=now + refresh_expires_in * 1000,
        )
        if not kept:
            return await self._fail("TOKEN_REFRESH_FAILED", "refreshed token failed validation")

        logger.debug(
            "access token refreshed (access_expires_at=%s, refresh_expires_at=%s)",
            self._store.access_expires_at,
            self._store.refresh_expires_at,
        )
        return RefreshResult.ok(self._store.snapshot())

    def _replaced_session(self, refresh_token: str) -> RefreshResult | None:
        """Result for a cycle whose session was replaced while it ran, else None.

        logout(), login() or set_tokens() swap the stored refresh token; the
        outcome of the old round trip must then neither touch the store nor
        fire the invalidation callback.
        """
        if self._store.refresh_token == refresh_token:
            return None
        logger.debug("session replaced during refresh, discarding the result")
        if self._store.has_access_token:
            return RefreshResult.ok(self._store.snapshot())
        return RefreshResult.failed("SESSION_CHANGED_DURING_REFRESH")

    async def _fail(self, error: str, reason: str) -> RefreshResult:
        logger.debug("token refresh failed, clearing session: %s", reason)
        self._store.clear()
        await self._invalidate(reason)
        return RefreshResult.failed(error)
