"""Crudify client library."""

from .client import CrudifyClient, InvalidationCallback
from .config import ENVIRONMENTS, CrudifyConfig, Environment, config_from_env, load_config
from .exceptions import (
    ConfigurationError,
    CrudifyError,
    CrudifyErrorCodes,
    RequestCancelledError,
    TransportError,
)
from .executor import ResponseInterceptor
from .logger import new_logger
from .models import (
    CrudifyResponse,
    ErrorCode,
    RequestOptions,
    ResponseStatus,
    TokenConfig,
    TokenData,
    Urgency,
)
from .refresh import RefreshCoordinator, RefreshState
from .token_store import TokenStore
from .transport import HttpxTransport, Transport, TransportResponse
from .validator import decode_claims, is_access_token_structurally_valid

__all__ = [
    "ENVIRONMENTS",
    "ConfigurationError",
    "CrudifyClient",
    "CrudifyConfig",
    "CrudifyError",
    "CrudifyErrorCodes",
    "CrudifyResponse",
    "Environment",
    "ErrorCode",
    "HttpxTransport",
    "InvalidationCallback",
    "RefreshCoordinator",
    "RefreshState",
    "RequestCancelledError",
    "RequestOptions",
    "ResponseInterceptor",
    "ResponseStatus",
    "TokenConfig",
    "TokenData",
    "TokenStore",
    "Transport",
    "TransportError",
    "TransportResponse",
    "Urgency",
    "config_from_env",
    "decode_claims",
    "is_access_token_structurally_valid",
    "load_config",
    "new_logger",
]
