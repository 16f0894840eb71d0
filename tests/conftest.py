"""Shared fixtures: fake clock, scripted transport, JWT minting."""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any

import jwt
import pytest

from crudify_client import CrudifyClient, CrudifyConfig, Transport, TransportResponse
from crudify_client.transport import run_cancellable

SECRET = "crudify-test-signing-secret-0123456789"
ENDPOINT = "https://items.example.com/graphql"
ITEMS_API_KEY = "da2-items-endpoint-key"
PUBLIC_API_KEY = "CRUD_public_key_for_tests"

_OPERATION = re.compile(r"response:(\w+)")


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int | None = None) -> None:
        self.now_ms = start_ms if start_ms is not None else int(time.time() * 1000)

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


def make_token(clock: FakeClock, ttl: int = 900, **claims: Any) -> str:
    payload: dict[str, Any] = {
        "sub": "user-1",
        "exp": clock.now_ms // 1000 + ttl,
        "type": "access",
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, SECRET, algorithm="HS256")


def envelope(
    data: Any = None,
    status: str = "OK",
    error_code: str | None = None,
    fields_warning: Any = None,
) -> dict[str, Any]:
    response: dict[str, Any] = {
        "data": None if data is None else json.dumps(data),
        "status": status,
        "fieldsWarning": fields_warning,
    }
    if error_code is not None:
        response["errorCode"] = error_code
    return {"data": {"response": response}}


def graphql_error(message: str = "Unauthorized", code: str | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"message": message}
    if code is not None:
        error["extensions"] = {"code": code}
    return {"errors": [error]}


def token_payload(
    token: str,
    refresh_token: str | None = "refresh-1",
    expires_in: int | None = 900,
    refresh_expires_in: int | None = 3600,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"token": token}
    if refresh_token is not None:
        payload["refreshToken"] = refresh_token
    if expires_in is not None:
        payload["expiresIn"] = expires_in
    if refresh_expires_in is not None:
        payload["refreshExpiresIn"] = refresh_expires_in
    return envelope(payload)


@dataclass
class RecordedRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any]

    @property
    def operation(self) -> str:
        match = _OPERATION.search(self.body["query"])
        return match.group(1) if match else ""

    @property
    def bearer(self) -> str | None:
        value = self.headers.get("Authorization", "")
        return value[len("Bearer "):] if value.startswith("Bearer ") else None


class FakeTransport(Transport):
    """Transport answering by operation name with scripted responses.

    Each operation has a queue; the last entry repeats. Entries may be a body,
    an exception to raise, or a callable taking the RecordedRequest. Setting
    ``gates[operation]`` holds matching requests until the event is set.
    """

    def __init__(self) -> None:
        self.requests: list[RecordedRequest] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.closed = False
        self._routes: dict[str, list[Any]] = {}

    def on(self, operation: str, *responses: Any) -> None:
        self._routes[operation] = list(responses)

    def calls(self, operation: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.operation == operation]

    async def post(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        signal: asyncio.Event | None = None,
    ) -> TransportResponse:
        request = RecordedRequest(url=url, headers=dict(headers), body=body)
        self.requests.append(request)
        gate = self.gates.get(request.operation)
        if gate is not None:
            await run_cancellable(gate.wait(), signal)
        else:
            await asyncio.sleep(0)
        queue = self._routes.get(request.operation)
        if not queue:
            raise AssertionError(f"unexpected operation: {request.operation}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(request)
        return TransportResponse(status_code=200, body=item)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    fake = FakeTransport()
    fake.on(
        "init",
        {"data": {"response": {"apiEndpoint": ENDPOINT, "apiKeyEndpoint": ITEMS_API_KEY}}},
    )
    return fake


@pytest.fixture
async def client(transport: FakeTransport, clock: FakeClock) -> CrudifyClient:
    crudify = CrudifyClient(CrudifyConfig(env="stg"), transport=transport, clock=clock)
    await crudify.init(PUBLIC_API_KEY)
    return crudify


def start_session(
    client: CrudifyClient,
    clock: FakeClock,
    access_ttl: int = 900,
    refresh_ttl: int = 3600,
    refresh_token: str = "refresh-0",
) -> str:
    """Install a session whose access token expires in ``access_ttl`` seconds."""
    token = make_token(clock, ttl=max(access_ttl, 1))
    assert client.set_tokens(
        access_token=token,
        refresh_token=refresh_token,
        expires_at=clock.now_ms + access_ttl * 1000,
        refresh_expires_at=clock.now_ms + refresh_ttl * 1000,
    )
    return token

