"""crudify_client exception types."""

from __future__ import annotations


class CrudifyError(Exception):
    """Base error for the crudify_client library."""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class CrudifyErrorCodes:
    """Error code constants for CrudifyError."""

    NOT_INITIALIZED: str = "NOT_INITIALIZED"
    INIT_FAILED: str = "INIT_FAILED"
    INVALID_CONFIG: str = "INVALID_CONFIG"
    CONFIG_READ_FAILED: str = "CONFIG_READ_FAILED"
    TRANSPORT_ERROR: str = "TRANSPORT_ERROR"
    REQUEST_CANCELLED: str = "REQUEST_CANCELLED"


class ConfigurationError(CrudifyError):
    """Raised when the client is used before init() or with a bad config."""

    def __init__(
        self,
        message: str,
        code: str = CrudifyErrorCodes.NOT_INITIALIZED,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(code=code, message=message, cause=cause)


class TransportError(CrudifyError):
    """Raised by a Transport when the request never produced a usable body."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(
            code=CrudifyErrorCodes.TRANSPORT_ERROR, message=message, cause=cause
        )


class RequestCancelledError(CrudifyError):
    """Raised when a request's cancellation signal fires before it completes."""

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(code=CrudifyErrorCodes.REQUEST_CANCELLED, message=message)
