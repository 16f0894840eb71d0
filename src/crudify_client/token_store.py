"""In-memory token store."""

from __future__ import annotations

import time
from collections.abc import Callable

from .models import TokenConfig, Urgency
from .validator import is_access_token_structurally_valid


def now_ms() -> int:
    return int(time.time() * 1000)


class TokenStore:
    """Holds the access/refresh token pair and their expiry timestamps.

    Timestamps are milliseconds since the epoch; ``0`` means unknown. The store
    never keeps an access token that fails the structural check.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or now_ms
        self.access_token = ""
        self.refresh_token = ""
        self.access_expires_at = 0
        self.refresh_expires_at = 0

    def now(self) -> int:
        return self._clock()

    def set(
        self,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        access_expires_at: int | None = None,
        refresh_expires_at: int | None = None,
    ) -> bool:
        """Overwrite the given fields, then clear everything if the access token is bad.

        Returns True when the resulting access token was kept.
        """
        if access_token is not None:
            self.access_token = access_token
        if refresh_token is not None:
            self.refresh_token = refresh_token
        if access_expires_at is not None:
            self.access_expires_at = int(access_expires_at)
        if refresh_expires_at is not None:
            self.refresh_expires_at = int(refresh_expires_at)

        if not is_access_token_structurally_valid(self.access_token, now=self.now() / 1000):
            self.clear()
            return False
        return True

    def clear(self) -> None:
        self.access_token = ""
        self.refresh_token = ""
        self.access_expires_at = 0
        self.refresh_expires_at = 0

    @property
    def has_access_token(self) -> bool:
        return bool(self.access_token)

    def is_access_expiring(self, urgency: Urgency = Urgency.NORMAL) -> bool:
        if not self.access_token or not self.access_expires_at:
            return False
        return self.now() + urgency.buffer_ms >= self.access_expires_at

    def is_refresh_expired(self) -> bool:
        if not self.refresh_expires_at:
            return False
        return self.now() >= self.refresh_expires_at

    def has_usable_refresh_token(self) -> bool:
        return bool(self.refresh_token) and not self.is_refresh_expired()

    def snapshot(self) -> TokenConfig:
        return TokenConfig(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.access_expires_at,
            refresh_expires_at=self.refresh_expires_at,
        )
