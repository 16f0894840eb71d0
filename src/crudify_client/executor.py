"""Operation executor: pre-flight refresh, send, refresh-and-retry once, shape."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union

from .exceptions import ConfigurationError, RequestCancelledError, TransportError
from .logger import mask_headers
from .models import CrudifyResponse, ErrorCode, RefreshResult, RequestOptions, Urgency
from .operations import MUTATION_REFRESH_TOKEN, GraphQlQuery
from .refresh import Invalidator, RefreshCoordinator
from .response import format_response, is_auth_error
from .token_store import TokenStore
from .transport import Transport, run_cancellable

logger = logging.getLogger(__name__)

RawResponse = dict[str, Any]
ResponseInterceptor = Callable[[RawResponse], Union[RawResponse, Awaitable[RawResponse]]]

LOGIN_REQUIRED = "TOKEN_REFRESH_FAILED_PLEASE_LOGIN"


@dataclass
class Connection:
    """Connection parameters resolved by init()."""

    public_api_key: str = ""
    endpoint: str = ""
    api_key: str = ""

    @property
    def ready(self) -> bool:
        return bool(self.endpoint and self.api_key)


class OperationExecutor:
    """Runs GraphQL operations against the items endpoint on behalf of a session."""

    def __init__(
        self,
        connection: Connection,
        store: TokenStore,
        transport: Transport,
        invalidate: Invalidator,
    ) -> None:
        self._connection = connection
        self._store = store
        self._transport = transport
        self._invalidate = invalidate
        self.coordinator = RefreshCoordinator(store, self._send_refresh, invalidate)
        self.interceptor: ResponseInterceptor | None = None

    def require_connection(self) -> None:
        if not self._connection.ready:
            raise ConfigurationError("Crudify: Not initialized. Call init() first.")

    async def execute(
        self, query: GraphQlQuery, options: RequestOptions | None = None
    ) -> CrudifyResponse:
        """Run an operation as the logged-in user (or with the API key when logged out)."""
        self.require_connection()
        options = options or RequestOptions()

        if self._store.has_access_token and self._store.is_access_expiring(Urgency.CRITICAL):
            if self._store.has_usable_refresh_token():
                logger.debug("access token expiring, refreshing before the request")
                try:
                    refreshed = await self._await_refresh(force=False, options=options)
                except RequestCancelledError:
                    return _cancelled()
                if not refreshed.success:
                    return CrudifyResponse.failure(
                        "_auth", LOGIN_REQUIRED, ErrorCode.TOKEN_REFRESH_FAILED
                    )
            elif self._store.refresh_token:
                logger.debug("access token expiring and refresh token expired")
                self._store.clear()
                await self._invalidate("refresh token expired")
                return CrudifyResponse.failure("_auth", LOGIN_REQUIRED, ErrorCode.UNAUTHORIZED)

        sent_token = self._store.access_token
        try:
            raw = await self._post(query, self._auth_headers(), options)
        except RequestCancelledError:
            return _cancelled()
        except TransportError as e:
            return _network_failure(e)

        if is_auth_error(raw):
            try:
                renewed = await self._renew_after_rejection(sent_token, options)
            except RequestCancelledError:
                return _cancelled()
            if renewed:
                try:
                    raw = await self._post(query, self._auth_headers(), options)
                except RequestCancelledError:
                    return _cancelled()
                except TransportError as e:
                    return _network_failure(e)

        return await self._shape(raw)

    async def execute_public(
        self, query: GraphQlQuery, options: RequestOptions | None = None
    ) -> CrudifyResponse:
        """Run an operation authenticated only by the API key."""
        self.require_connection()
        options = options or RequestOptions()
        try:
            raw = await self._post(query, {"x-api-key": self._connection.api_key}, options)
        except RequestCancelledError:
            return _cancelled()
        except TransportError as e:
            return _network_failure(e)
        return await self._shape(raw)

    async def send_with_api_key(self, query: GraphQlQuery) -> RawResponse:
        """Send without session handling; TransportError propagates."""
        self.require_connection()
        return await self._post(query, {"x-api-key": self._connection.api_key}, RequestOptions())

    async def _send_refresh(self, refresh_token: str) -> RawResponse:
        query = GraphQlQuery(MUTATION_REFRESH_TOKEN, {"refreshToken": refresh_token})
        return await self.send_with_api_key(query)

    async def _await_refresh(self, force: bool, options: RequestOptions) -> RefreshResult:
        return await run_cancellable(self.coordinator.refresh(force=force), options.signal)

    async def _renew_after_rejection(self, sent_token: str, options: RequestOptions) -> bool:
        """Whether the session now holds a token worth one resend.

        A token renewed by another caller while this request was out is used
        as is; otherwise the rejected token is refreshed.
        """
        current = self._store.access_token
        if current and current != sent_token:
            logger.debug("request rejected with a superseded token, resending")
            return True
        if not self._store.has_usable_refresh_token():
            return False
        logger.debug("request rejected as unauthorized, refreshing and retrying once")
        refreshed = await self._await_refresh(force=True, options=options)
        return refreshed.success

    def _auth_headers(self) -> dict[str, str]:
        if self._store.access_token:
            return {"Authorization": f"Bearer {self._store.access_token}"}
        return {"x-api-key": self._connection.api_key}

    async def _post(
        self, query: GraphQlQuery, auth: dict[str, str], options: RequestOptions
    ) -> RawResponse:
        headers = {
            "Content-Type": "application/json",
            "x-subscriber-key": self._connection.public_api_key,
            **options.headers,
            **auth,
        }
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "POST %s headers=%s variables=%s",
                self._connection.endpoint,
                mask_headers(headers),
                sorted(query.variables),
            )
        response = await self._transport.post(
            self._connection.endpoint, headers, query.to_body(), options.signal
        )
        logger.debug("response status %s", response.status_code)
        if not isinstance(response.body, dict):
            raise TransportError(f"Unexpected response body type: {type(response.body).__name__}")
        return response.body

    async def _shape(self, raw: RawResponse) -> CrudifyResponse:
        if self.interceptor is not None:
            intercepted = self.interceptor(raw)
            if inspect.isawaitable(intercepted):
                intercepted = await intercepted
            raw = intercepted
        return format_response(raw)


def _cancelled() -> CrudifyResponse:
    return CrudifyResponse.failure("_request", "REQUEST_CANCELLED", ErrorCode.REQUEST_CANCELLED)


def _network_failure(error: TransportError) -> CrudifyResponse:
    logger.debug("transport failure: %s", error)
    return CrudifyResponse.failure("_network", "NETWORK_ERROR", ErrorCode.NETWORK_ERROR)
