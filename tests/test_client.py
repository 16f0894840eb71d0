"""CrudifyClient facade tests: init, login, token management, items API."""

import json

import pytest
from conftest import (
    ENDPOINT,
    PUBLIC_API_KEY,
    FakeClock,
    FakeTransport,
    envelope,
    make_token,
    start_session,
    token_payload,
)

from crudify_client import (
    ENVIRONMENTS,
    CrudifyClient,
    CrudifyConfig,
    CrudifyError,
    Environment,
    ErrorCode,
    TokenConfig,
    TransportError,
)


async def test_init_resolves_endpoint(transport: FakeTransport, clock: FakeClock) -> None:
    client = CrudifyClient(CrudifyConfig(env="stg"), transport=transport, clock=clock)

    await client.init(PUBLIC_API_KEY)

    request = transport.calls("init")[0]
    assert request.url == ENVIRONMENTS[Environment.STG].url
    assert request.headers["x-api-key"] == ENVIRONMENTS[Environment.STG].api_key
    assert request.body["variables"] == {"apiKey": PUBLIC_API_KEY}

    transport.on("getStructure", envelope({"modules": []}))
    await client.get_structure()
    assert transport.calls("getStructure")[0].url == ENDPOINT


async def test_configure_switches_environment(transport: FakeTransport, clock: FakeClock) -> None:
    client = CrudifyClient(CrudifyConfig(env="stg"), transport=transport, clock=clock)
    client.configure("dev")

    await client.init(PUBLIC_API_KEY)

    assert transport.calls("init")[0].url == ENVIRONMENTS[Environment.DEV].url


async def test_metadata_override(transport: FakeTransport, clock: FakeClock) -> None:
    config = CrudifyConfig(metadata_endpoint="https://meta.local/graphql", metadata_api_key="local-key")
    client = CrudifyClient(config, transport=transport, clock=clock)

    await client.init(PUBLIC_API_KEY)

    request = transport.calls("init")[0]
    assert request.url == "https://meta.local/graphql"
    assert request.headers["x-api-key"] == "local-key"


@pytest.mark.parametrize(
    "reply",
    [
        TransportError("dns failure"),
        {"data": {"response": None}, "errors": [{"message": "Invalid api key"}]},
        {"data": {"response": {"apiKeyEndpoint": "k"}}},
    ],
)
async def test_init_failure(clock: FakeClock, reply: object) -> None:
    transport = FakeTransport()
    transport.on("init", reply)
    client = CrudifyClient(CrudifyConfig(), transport=transport, clock=clock)

    with pytest.raises(CrudifyError) as exc_info:
        await client.init(PUBLIC_API_KEY)
    assert exc_info.value.code == "INIT_FAILED"


async def test_init_clears_previous_session(client: CrudifyClient, clock: FakeClock) -> None:
    start_session(client, clock)
    await client.init(PUBLIC_API_KEY)
    assert client.is_logged_in() is False


async def test_init_log_level(client: CrudifyClient) -> None:
    assert client.get_log_level() == "none"
    await client.init(PUBLIC_API_KEY, log_level="debug")
    assert client.get_log_level() == "debug"


async def test_login_with_email(client: CrudifyClient, transport: FakeTransport, clock: FakeClock) -> None:
    token = make_token(clock)
    transport.on("login", token_payload(token, refresh_token="refresh-1", expires_in=600, refresh_expires_in=7200))

    result = await client.login("user@example.com", "pw")

    assert result.success is True
    assert result.data == {
        "loginStatus": "successful",
        "token": token,
        "refreshToken": "refresh-1",
        "expiresAt": clock.now_ms + 600_000,
        "refreshExpiresAt": clock.now_ms + 7_200_000,
    }
    request = transport.calls("login")[0]
    assert request.body["variables"] == {"username": None, "email": "user@example.com", "password": "pw"}
    assert "Authorization" not in request.headers
    assert client.is_logged_in() is True


async def test_login_with_username(client: CrudifyClient, transport: FakeTransport, clock: FakeClock) -> None:
    transport.on("login", token_payload(make_token(clock)))

    await client.login("jdoe", "pw")

    variables = transport.calls("login")[0].body["variables"]
    assert variables["username"] == "jdoe"
    assert variables["email"] is None


async def test_login_without_refresh_token_leaves_expiry_unknown(
    client: CrudifyClient, transport: FakeTransport, clock: FakeClock
) -> None:
    transport.on("login", token_payload(make_token(clock), refresh_token=None))

    result = await client.login("jdoe", "pw")

    assert result.success is True
    data = client.get_token_data()
    assert data.expires_at == 0
    assert data.refresh_token == ""
    assert data.will_expire_soon is False


async def test_login_failure_is_returned(client: CrudifyClient, transport: FakeTransport) -> None:
    transport.on("login", envelope({"password": ["INVALID_CREDENTIALS"]}, status="ERROR", error_code="UNAUTHORIZED"))

    result = await client.login("jdoe", "bad")

    assert result.success is False
    assert result.errors == {"password": ["INVALID_CREDENTIALS"]}
    assert result.error_code == ErrorCode.UNAUTHORIZED
    assert client.is_logged_in() is False


async def test_login_with_malformed_token(
    client: CrudifyClient, transport: FakeTransport, clock: FakeClock
) -> None:
    transport.on("login", token_payload(make_token(clock, type="refresh")))

    result = await client.login("jdoe", "pw")

    assert result.success is False
    assert result.errors == {"_auth": ["INVALID_TOKEN_RECEIVED"]}
    assert client.get_token_data().access_token == ""


async def test_login_network_failure(client: CrudifyClient, transport: FakeTransport) -> None:
    transport.on("login", TransportError("timeout"))
    result = await client.login("jdoe", "pw")
    assert result.error_code == ErrorCode.NETWORK_ERROR


async def test_logout_does_not_fire_callback(client: CrudifyClient, clock: FakeClock) -> None:
    start_session(client, clock)
    fired = []
    client.set_invalidation_callback(lambda: fired.append(True))

    result = await client.logout()

    assert result.success is True
    assert client.is_logged_in() is False
    assert fired == []


async def test_set_tokens_and_get_token_data(client: CrudifyClient, clock: FakeClock) -> None:
    token = make_token(clock)
    kept = client.set_tokens(
        {
            "accessToken": token,
            "refreshToken": "refresh-9",
            "expiresAt": clock.now_ms + 200_000,
            "refreshExpiresAt": clock.now_ms + 3_600_000,
        }
    )
    assert kept is True

    data = client.get_token_data()
    assert data.access_token == token
    assert data.refresh_token == "refresh-9"
    assert data.expires_in == 200_000
    assert data.is_expired is False
    assert data.will_expire_soon is True
    assert data.is_refresh_expired is False
    assert data.is_valid is True
    assert data.to_dict()["expiresIn"] == 200_000


async def test_set_tokens_from_token_config(client: CrudifyClient, clock: FakeClock) -> None:
    token = make_token(clock)
    assert client.set_tokens(TokenConfig(access_token=token, refresh_token="r")) is True
    assert client.get_token_data().refresh_token == "r"


async def test_set_tokens_partial_update(client: CrudifyClient, clock: FakeClock) -> None:
    token = start_session(client, clock)
    assert client.set_tokens(refresh_token="refresh-new") is True
    data = client.get_token_data()
    assert data.access_token == token
    assert data.refresh_token == "refresh-new"


async def test_set_tokens_rejects_malformed_token(client: CrudifyClient, clock: FakeClock) -> None:
    start_session(client, clock)
    assert client.set_tokens(access_token="not-a-jwt") is False
    data = client.get_token_data()
    assert data.access_token == ""
    assert data.refresh_token == ""
    assert data.is_valid is False


async def test_refresh_access_token(client: CrudifyClient, transport: FakeTransport, clock: FakeClock) -> None:
    start_session(client, clock)
    new_token = make_token(clock, jti="r1")
    transport.on("refreshToken", token_payload(new_token, refresh_token="refresh-1"))

    result = await client.refresh_access_token()

    assert result.success is True
    assert result.data["token"] == new_token
    assert result.data["refreshToken"] == "refresh-1"
    assert len(transport.calls("refreshToken")) == 1


async def test_refresh_access_token_without_session(client: CrudifyClient) -> None:
    result = await client.refresh_access_token()
    assert result.success is False
    assert result.errors == {"_refresh": ["NO_REFRESH_TOKEN_AVAILABLE"]}
    assert result.error_code == ErrorCode.TOKEN_REFRESH_FAILED


async def test_item_operations_send_module_and_json_data(
    client: CrudifyClient, transport: FakeTransport, clock: FakeClock
) -> None:
    start_session(client, clock)
    for operation in ("createItem", "readItem", "updateItem", "deleteItem"):
        transport.on(operation, envelope({"_id": "1"}))

    await client.create_item("products", {"name": "chair"})
    await client.read_item("products", {"_id": "1"})
    await client.update_item("products", {"_id": "1", "name": "desk"})
    await client.delete_item("products", "1")

    sent = {r.operation: r.body["variables"] for r in transport.requests if r.operation != "init"}
    assert sent["createItem"]["moduleKey"] == "products"
    assert json.loads(sent["createItem"]["data"]) == {"name": "chair"}
    assert json.loads(sent["readItem"]["data"]) == {"_id": "1"}
    assert json.loads(sent["updateItem"]["data"]) == {"_id": "1", "name": "desk"}
    assert json.loads(sent["deleteItem"]["data"]) == {"_id": "1"}


async def test_transaction(client: CrudifyClient, transport: FakeTransport) -> None:
    operations = [{"operation": "create", "moduleKey": "products", "data": {"name": "a"}}]
    transport.on("transaction", envelope([{"ok": True}]))

    result = await client.transaction(operations)

    assert result.data == [{"ok": True}]
    assert json.loads(transport.calls("transaction")[0].body["variables"]["data"]) == operations


async def test_public_operations_never_send_bearer(
    client: CrudifyClient, transport: FakeTransport, clock: FakeClock
) -> None:
    start_session(client, clock, access_ttl=10)
    transport.on("getStructure", envelope({"modules": []}))
    transport.on("createItem", envelope({"_id": "1"}))

    await client.get_structure_public()
    await client.create_item_public("contact", {"email": "a@b.c"})

    for request in transport.requests[1:]:
        assert "Authorization" not in request.headers
        assert request.headers["x-api-key"]
    assert transport.calls("refreshToken") == []


async def test_generate_signed_url(client: CrudifyClient, transport: FakeTransport, clock: FakeClock) -> None:
    start_session(client, clock)
    transport.on("generateSignedUrl", envelope({"url": "https://s3.example.com/upload?sig=x"}))

    result = await client.generate_signed_url("photo.png", "image/png")

    assert result.success is True
    assert result.data == "https://s3.example.com/upload?sig=x"
    variables = transport.calls("generateSignedUrl")[0].body["variables"]
    assert json.loads(variables["data"]) == {"fileName": "photo.png", "contentType": "image/png"}


async def test_generate_signed_url_requires_login(client: CrudifyClient, transport: FakeTransport) -> None:
    result = await client.generate_signed_url("photo.png", "image/png")
    assert result.errors == {"_auth": ["LOGIN_REQUIRED"]}
    assert transport.calls("generateSignedUrl") == []


async def test_shutdown_closes_transport(client: CrudifyClient, transport: FakeTransport) -> None:
    await client.shutdown()
    assert transport.closed is True


async def test_context_manager_closes_transport(transport: FakeTransport, clock: FakeClock) -> None:
    async with CrudifyClient(CrudifyConfig(), transport=transport, clock=clock) as client:
        await client.init(PUBLIC_API_KEY)
    assert transport.closed is True


async def test_clients_have_isolated_sessions(clock: FakeClock) -> None:
    first_transport, second_transport = FakeTransport(), FakeTransport()
    for t in (first_transport, second_transport):
        t.on("init", {"data": {"response": {"apiEndpoint": ENDPOINT, "apiKeyEndpoint": "k"}}})
    first = CrudifyClient(CrudifyConfig(), transport=first_transport, clock=clock)
    second = CrudifyClient(CrudifyConfig(), transport=second_transport, clock=clock)
    await first.init(PUBLIC_API_KEY)
    await second.init(PUBLIC_API_KEY)

    start_session(first, clock)

    assert first.is_logged_in() is True
    assert second.is_logged_in() is False


async def test_login_with_non_numeric_lifetime(
    client: CrudifyClient, transport: FakeTransport, clock: FakeClock
) -> None:
    transport.on("login", envelope({"token": make_token(clock), "refreshToken": "r", "expiresIn": "soon"}))

    result = await client.login("jdoe", "pw")

    assert result.success is False
    assert result.errors == {"_auth": ["INVALID_TOKEN_RECEIVED"]}
    assert client.is_logged_in() is False


async def test_refresh_with_non_numeric_lifetime_is_a_failure_result(
    client: CrudifyClient, transport: FakeTransport, clock: FakeClock
) -> None:
    start_session(client, clock)
    transport.on(
        "refreshToken",
        envelope({"token": make_token(clock, jti="r1"), "expiresIn": "soon"}),
    )

    result = await client.refresh_access_token()

    assert result.success is False
    assert result.error_code == ErrorCode.TOKEN_REFRESH_FAILED
    assert client.get_token_data().access_token == ""
