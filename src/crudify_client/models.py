"""Crudify data models."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes reported in CrudifyResponse.error_code."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"

    @classmethod
    def parse(cls, value: Any) -> ErrorCode | str | None:
        """Map a backend errorCode onto the enum, keeping unknown codes as strings."""
        if value is None or value == "":
            return None
        try:
            return cls(value)
        except ValueError:
            return str(value)


class ResponseStatus(str, Enum):
    """Status values of the backend response envelope."""

    OK = "OK"
    WARNING = "WARNING"
    FIELD_ERROR = "FIELD_ERROR"
    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
    ERROR = "ERROR"


class Urgency(Enum):
    """Lookahead buffers (seconds) used to decide a proactive refresh."""

    CRITICAL = 30
    HIGH = 120
    NORMAL = 300

    @property
    def buffer_ms(self) -> int:
        return self.value * 1000


@dataclass
class CrudifyResponse:
    """Public operation result."""

    success: bool
    data: Any = None
    errors: dict[str, list[str]] | None = None
    error_code: ErrorCode | str | None = None
    fields_warning: Any = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.errors is not None:
            result["errors"] = self.errors
        if self.error_code is not None:
            code = self.error_code
            result["errorCode"] = code.value if isinstance(code, ErrorCode) else code
        if self.fields_warning is not None:
            result["fieldsWarning"] = self.fields_warning
        return result

    @classmethod
    def failure(
        cls,
        key: str,
        message: str,
        error_code: ErrorCode | str | None = None,
    ) -> CrudifyResponse:
        return cls(success=False, errors={key: [message]}, error_code=error_code)


@dataclass(frozen=True)
class TokenConfig:
    """Token pair used to restore a session manually.

    Expiry timestamps are milliseconds since the epoch; ``0`` means unknown.
    """

    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    refresh_expires_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "refreshExpiresAt": self.refresh_expires_at,
        }


@dataclass(frozen=True)
class TokenData:
    """Introspection view of the current session."""

    access_token: str
    refresh_token: str
    expires_at: int
    refresh_expires_at: int
    is_expired: bool
    is_refresh_expired: bool
    is_valid: bool
    expires_in: int
    will_expire_soon: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "refreshExpiresAt": self.refresh_expires_at,
            "isExpired": self.is_expired,
            "isRefreshExpired": self.is_refresh_expired,
            "isValid": self.is_valid,
            "expiresIn": self.expires_in,
            "willExpireSoon": self.will_expire_soon,
        }


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one refresh cycle, shared by every caller attached to it."""

    success: bool
    tokens: TokenConfig | None = None
    error: str = ""

    @classmethod
    def ok(cls, tokens: TokenConfig) -> RefreshResult:
        return cls(success=True, tokens=tokens)

    @classmethod
    def failed(cls, error: str) -> RefreshResult:
        return cls(success=False, error=error)

    def to_response(self) -> CrudifyResponse:
        if self.success and self.tokens is not None:
            return CrudifyResponse(success=True, data=self.tokens.to_dict())
        return CrudifyResponse.failure(
            "_refresh", self.error, ErrorCode.TOKEN_REFRESH_FAILED
        )


@dataclass
class RequestOptions:
    """Per-call options.

    ``signal`` aborts the call when set. It never cancels a refresh shared
    with other callers.
    """

    signal: asyncio.Event | None = None
    headers: dict[str, str] = field(default_factory=dict)
