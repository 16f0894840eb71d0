"""HTTP transport for GraphQL POST requests."""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from .exceptions import RequestCancelledError, TransportError

T = TypeVar("T")


@dataclass
class TransportResponse:
    """Status code and decoded JSON body of one POST."""

    status_code: int
    body: Any


class Transport(ABC):
    """Abstract transport performing a single JSON POST."""

    @abstractmethod
    async def post(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        signal: asyncio.Event | None = None,
    ) -> TransportResponse:
        ...

    async def aclose(self) -> None:
        return None


async def run_cancellable(aw: Awaitable[T], signal: asyncio.Event | None) -> T:
    """Await ``aw`` unless ``signal`` is set first.

    When the signal wins, ``aw`` is cancelled and RequestCancelledError is
    raised. Wrap shared work in ``asyncio.shield`` so that only this waiter
    goes away.
    """
    if signal is None:
        return await aw
    if signal.is_set():
        if asyncio.iscoroutine(aw):
            aw.close()
        raise RequestCancelledError()

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    raise RequestCancelledError()


class HttpxTransport(Transport):
    """Transport backed by one pooled httpx.AsyncClient."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        max_connections: int = 10,
        keepalive_expiry_seconds: float = 60.0,
    ) -> None:
        self._timeout = timeout_seconds
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
            keepalive_expiry=keepalive_expiry_seconds,
        )
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, limits=self._limits)
        return self._client

    async def _send(
        self, url: str, headers: dict[str, str], body: dict[str, Any]
    ) -> TransportResponse:
        try:
            resp = await self._get_client().post(url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise TransportError(f"POST {url} failed: {e}", cause=e) from e
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(
                f"POST {url} returned a non-JSON body: HTTP {resp.status_code}", cause=e
            ) from e
        return TransportResponse(status_code=resp.status_code, body=data)

    async def post(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        signal: asyncio.Event | None = None,
    ) -> TransportResponse:
        return await run_cancellable(self._send(url, headers, body), signal)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
