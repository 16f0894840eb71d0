"""CrudifyClient: session facade and CRUD API over the Crudify items service."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

import structlog

from .config import CrudifyConfig, Environment
from .exceptions import CrudifyError, CrudifyErrorCodes, TransportError
from .executor import Connection, OperationExecutor, ResponseInterceptor
from .logger import mask_secret, new_logger
from .models import (
    CrudifyResponse,
    ErrorCode,
    RequestOptions,
    TokenConfig,
    TokenData,
    Urgency,
)
from .operations import (
    MUTATION_CREATE_ITEM,
    MUTATION_DELETE_ITEM,
    MUTATION_LOGIN,
    MUTATION_TRANSACTION,
    MUTATION_UPDATE_ITEM,
    QUERY_GENERATE_SIGNED_URL,
    QUERY_GET_PERMISSIONS,
    QUERY_GET_STRUCTURE,
    QUERY_INIT,
    QUERY_READ_ITEM,
    QUERY_READ_ITEMS,
    GraphQlQuery,
    aws_json,
)
from .refresh import token_lifetimes
from .response import extract_token_payload, format_response
from .token_store import TokenStore
from .transport import HttpxTransport, Transport
from .validator import is_access_token_structurally_valid

InvalidationCallback = Callable[[], Union[None, Awaitable[None]]]


class CrudifyClient:
    """Client for one Crudify session.

    Each instance owns its own token store, refresh coordinator and transport,
    so several isolated sessions can coexist in one process.

    Usage::

        async with CrudifyClient(CrudifyConfig(env="stg")) as client:
            await client.init("public-api-key")
            await client.login("user@example.com", "secret")
            result = await client.read_items("products", {"limit": 10})
    """

    def __init__(
        self,
        config: CrudifyConfig | None = None,
        *,
        transport: Transport | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._config = config or CrudifyConfig()
        self._metadata = self._config.metadata()
        self._log_level = self._config.log_level
        self._transport = transport or HttpxTransport(
            timeout_seconds=self._config.timeout_seconds,
            max_connections=self._config.max_connections,
            keepalive_expiry_seconds=self._config.keepalive_expiry_seconds,
        )
        self._store = TokenStore(clock=clock)
        self._connection = Connection(public_api_key=self._config.public_api_key)
        self._invalidation_callback: InvalidationCallback | None = None
        self._executor = OperationExecutor(
            self._connection, self._store, self._transport, self._on_invalidated
        )
        self._logger: structlog.stdlib.BoundLogger = structlog.stdlib.get_logger(__name__)
        if self._log_level == "debug":
            self._logger = new_logger(self._log_level, self._config.log_format)

    async def __aenter__(self) -> CrudifyClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    def _debug(self, event: str, **kw: Any) -> None:
        if self._log_level == "debug":
            self._logger.debug(event, **kw)

    # -- configuration -------------------------------------------------------

    def get_log_level(self) -> str:
        return self._log_level

    def configure(self, env: str | Environment) -> None:
        """Select the environment whose metadata service init() talks to."""
        self._metadata = self._config.model_copy(update={"env": Environment.parse(env)}).metadata()

    async def init(self, public_api_key: str, log_level: str | None = None) -> None:
        """Resolve the items endpoint for ``public_api_key`` and start a fresh session.

        Raises:
            CrudifyError: INIT_FAILED when the metadata service is unreachable
                or does not recognise the key.
        """
        self._log_level = log_level or self._config.log_level
        if self._log_level == "debug":
            self._logger = new_logger(self._log_level, self._config.log_format)
        self._connection.public_api_key = public_api_key
        self._store.clear()

        headers = {"Content-Type": "application/json", "x-api-key": self._metadata.api_key}
        body = GraphQlQuery(QUERY_INIT, {"apiKey": public_api_key}).to_body()
        try:
            response = await self._transport.post(self._metadata.url, headers, body)
        except TransportError as e:
            raise CrudifyError(
                code=CrudifyErrorCodes.INIT_FAILED,
                message="Failed to initialize Crudify. Check API key or network.",
                cause=e,
            ) from e

        data = response.body if isinstance(response.body, dict) else {}
        init_response = (data.get("data") or {}).get("response")
        self._debug(
            "init response",
            metadata_url=self._metadata.url,
            status_code=response.status_code,
            ok=bool(init_response),
        )
        if not init_response or not init_response.get("apiEndpoint"):
            raise CrudifyError(
                code=CrudifyErrorCodes.INIT_FAILED,
                message=f"Failed to initialize Crudify: {data.get('errors') or data}",
            )
        self._connection.endpoint = init_response["apiEndpoint"]
        self._connection.api_key = init_response.get("apiKeyEndpoint") or ""

    async def shutdown(self) -> None:
        """Close pooled connections."""
        self._debug("shutting down transport")
        await self._transport.aclose()

    # -- session -------------------------------------------------------------

    async def login(self, identifier: str, password: str) -> CrudifyResponse:
        """Log in with an email (anything containing ``@``) or a username."""
        self._executor.require_connection()
        is_email = "@" in identifier
        variables = {
            "username": None if is_email else identifier,
            "email": identifier if is_email else None,
            "password": password,
        }
        try:
            raw = await self._executor.send_with_api_key(GraphQlQuery(MUTATION_LOGIN, variables))
        except TransportError:
            return CrudifyResponse.failure("_network", "NETWORK_ERROR", ErrorCode.NETWORK_ERROR)

        response = format_response(raw)
        payload = extract_token_payload(response)
        if payload is None:
            return response

        fields: dict[str, Any] = {"access_token": str(payload["token"]), "refresh_token": ""}
        fields["access_expires_at"] = fields["refresh_expires_at"] = 0
        if payload.get("refreshToken"):
            try:
                expires_in, refresh_expires_in = token_lifetimes(payload)
            except ValueError as e:
                self._debug("login returned an invalid token lifetime", error=str(e))
                return CrudifyResponse.failure(
                    "_auth", "INVALID_TOKEN_RECEIVED", ErrorCode.UNAUTHORIZED
                )
            now = self._store.now()
            fields["refresh_token"] = str(payload["refreshToken"])
            fields["access_expires_at"] = now + expires_in * 1000
            fields["refresh_expires_at"] = now + refresh_expires_in * 1000
        if not self._store.set(**fields):
            self._debug("login returned a token that failed validation")
            return CrudifyResponse.failure("_auth", "INVALID_TOKEN_RECEIVED", ErrorCode.UNAUTHORIZED)

        self._debug(
            "login successful",
            token=mask_secret(self._store.access_token),
            access_expires_at=self._store.access_expires_at,
            refresh_expires_at=self._store.refresh_expires_at,
            version=payload.get("version"),
        )
        return CrudifyResponse(
            success=True,
            data={"loginStatus": "successful", **self._store.snapshot().to_dict()},
            fields_warning=response.fields_warning,
        )

    async def logout(self) -> CrudifyResponse:
        """Forget the session locally. Never fires the invalidation callback."""
        self._store.clear()
        self._debug("logged out")
        return CrudifyResponse(success=True)

    def is_logged_in(self) -> bool:
        return is_access_token_structurally_valid(
            self._store.access_token, now=self._store.now() / 1000
        )

    def set_tokens(
        self,
        tokens: TokenConfig | Mapping[str, Any] | None = None,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expires_at: int | None = None,
        refresh_expires_at: int | None = None,
    ) -> bool:
        """Restore a session. Omitted fields keep their current value.

        Accepts a TokenConfig, a camelCase mapping (``accessToken``,
        ``refreshToken``, ``expiresAt``, ``refreshExpiresAt``) or keywords.
        Returns False when the resulting access token was rejected and the
        session cleared.
        """
        if isinstance(tokens, TokenConfig):
            access_token = tokens.access_token or access_token
            refresh_token = tokens.refresh_token or refresh_token
            expires_at = tokens.expires_at or expires_at
            refresh_expires_at = tokens.refresh_expires_at or refresh_expires_at
        elif tokens is not None:
            access_token = tokens.get("accessToken") or access_token
            refresh_token = tokens.get("refreshToken") or refresh_token
            expires_at = tokens.get("expiresAt") or expires_at
            refresh_expires_at = tokens.get("refreshExpiresAt") or refresh_expires_at
        kept = self._store.set(
            access_token=access_token or None,
            refresh_token=refresh_token or None,
            access_expires_at=expires_at or None,
            refresh_expires_at=refresh_expires_at or None,
        )
        self._debug("tokens set", kept=kept, token=mask_secret(self._store.access_token))
        return kept

    def get_token_data(self) -> TokenData:
        store = self._store
        now = store.now()
        expires_in = max(0, store.access_expires_at - now) if store.access_expires_at else 0
        return TokenData(
            access_token=store.access_token,
            refresh_token=store.refresh_token,
            expires_at=store.access_expires_at,
            refresh_expires_at=store.refresh_expires_at,
            is_expired=store.is_access_expiring(Urgency.HIGH),
            is_refresh_expired=store.is_refresh_expired(),
            is_valid=self.is_logged_in(),
            expires_in=expires_in,
            will_expire_soon=store.is_access_expiring(Urgency.NORMAL),
        )

    async def refresh_access_token(self) -> CrudifyResponse:
        """Force a refresh now, joining one already in flight."""
        self._executor.require_connection()
        result = await self._executor.coordinator.refresh(force=True)
        return result.to_response()

    def set_invalidation_callback(self, callback: InvalidationCallback | None) -> None:
        """Register a hook fired when a failure (never logout()) clears the session."""
        self._invalidation_callback = callback

    def set_response_interceptor(self, interceptor: ResponseInterceptor | None) -> None:
        self._debug("response interceptor set", enabled=interceptor is not None)
        self._executor.interceptor = interceptor

    async def _on_invalidated(self, reason: str) -> None:
        self._debug("session invalidated", reason=reason)
        callback = self._invalidation_callback
        if callback is None:
            return
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            self._logger.exception("invalidation callback failed")

    # -- items API -----------------------------------------------------------

    async def get_permissions(self, options: RequestOptions | None = None) -> CrudifyResponse:
        return await self._executor.execute(GraphQlQuery(QUERY_GET_PERMISSIONS), options)

    async def get_structure(self, options: RequestOptions | None = None) -> CrudifyResponse:
        return await self._executor.execute(GraphQlQuery(QUERY_GET_STRUCTURE), options)

    async def get_structure_public(self, options: RequestOptions | None = None) -> CrudifyResponse:
        return await self._executor.execute_public(GraphQlQuery(QUERY_GET_STRUCTURE), options)

    async def create_item(
        self, module_key: str, data: Mapping[str, Any], options: RequestOptions | None = None
    ) -> CrudifyResponse:
        return await self._executor.execute(_item_query(MUTATION_CREATE_ITEM, module_key, data), options)

    async def create_item_public(
        self, module_key: str, data: Mapping[str, Any], options: RequestOptions | None = None
    ) -> CrudifyResponse:
        return await self._executor.execute_public(
            _item_query(MUTATION_CREATE_ITEM, module_key, data), options
        )

    async def read_item(
        self, module_key: str, filter: Mapping[str, Any], options: RequestOptions | None = None
    ) -> CrudifyResponse:
        return await self._executor.execute(_item_query(QUERY_READ_ITEM, module_key, filter), options)

    async def read_items(
        self, module_key: str, filter: Mapping[str, Any], options: RequestOptions | None = None
    ) -> CrudifyResponse:
        return await self._executor.execute(_item_query(QUERY_READ_ITEMS, module_key, filter), options)

    async def update_item(
        self, module_key: str, data: Mapping[str, Any], options: RequestOptions | None = None
    ) -> CrudifyResponse:
        return await self._executor.execute(_item_query(MUTATION_UPDATE_ITEM, module_key, data), options)

    async def delete_item(
        self, module_key: str, id: str, options: RequestOptions | None = None
    ) -> CrudifyResponse:
        return await self._executor.execute(
            _item_query(MUTATION_DELETE_ITEM, module_key, {"_id": id}), options
        )

    async def transaction(self, data: Any, options: RequestOptions | None = None) -> CrudifyResponse:
        query = GraphQlQuery(MUTATION_TRANSACTION, {"data": aws_json(data)})
        return await self._executor.execute(query, options)

    async def generate_signed_url(
        self, file_name: str, content_type: str, options: RequestOptions | None = None
    ) -> CrudifyResponse:
        """Request an upload URL. Requires a logged-in session."""
        self._executor.require_connection()
        if not self._store.access_token:
            return CrudifyResponse.failure("_auth", "LOGIN_REQUIRED", ErrorCode.UNAUTHORIZED)
        query = GraphQlQuery(
            QUERY_GENERATE_SIGNED_URL,
            {"data": aws_json({"fileName": file_name, "contentType": content_type})},
        )
        response = await self._executor.execute(query, options)
        if response.success and isinstance(response.data, dict) and response.data.get("url"):
            return CrudifyResponse(success=True, data=response.data["url"])
        return response


def _item_query(document: str, module_key: str, data: Mapping[str, Any]) -> GraphQlQuery:
    return GraphQlQuery(document, {"moduleKey": module_key, "data": aws_json(dict(data))})
