"""GraphQL documents sent to the Crudify backend."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class GraphQlQuery:
    """GraphQL query or mutation."""

    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"query": self.query, "variables": self.variables}
        if self.operation_name is not None:
            body["operationName"] = self.operation_name
        return body


def aws_json(value: Any) -> str:
    """Encode a payload for an AWSJSON variable."""
    return json.dumps(value, separators=(",", ":"), default=str)


def _envelope(kind: str, name: str, signature: str, call: str) -> str:
    return (
        f"{kind} {name}{signature} {{\n"
        f"  response:{call} {{\n"
        "    data\n"
        "    status\n"
        "    fieldsWarning\n"
        "  }\n"
        "}\n"
    )


QUERY_INIT = """query Init($apiKey: String!) {
  response:init(apiKey: $apiKey) {
    apiEndpoint
    apiKeyEndpoint
  }
}
"""

MUTATION_LOGIN = _envelope(
    "mutation",
    "Login",
    "($username: String, $email: String, $password: String!)",
    "login(username: $username, email: $email, password: $password)",
)

MUTATION_REFRESH_TOKEN = _envelope(
    "mutation",
    "RefreshToken",
    "($refreshToken: String!)",
    "refreshToken(refreshToken: $refreshToken)",
)

QUERY_GET_PERMISSIONS = _envelope("query", "GetPermissions", "", "getPermissions")

QUERY_GET_STRUCTURE = _envelope("query", "GetStructure", "", "getStructure")

_ITEM_SIGNATURE = "($moduleKey: String!, $data: AWSJSON)"
_ITEM_ARGS = "(moduleKey: $moduleKey, data: $data)"

MUTATION_CREATE_ITEM = _envelope("mutation", "CreateItem", _ITEM_SIGNATURE, f"createItem{_ITEM_ARGS}")
QUERY_READ_ITEM = _envelope("query", "ReadItem", _ITEM_SIGNATURE, f"readItem{_ITEM_ARGS}")
QUERY_READ_ITEMS = _envelope("query", "ReadItems", _ITEM_SIGNATURE, f"readItems{_ITEM_ARGS}")
MUTATION_UPDATE_ITEM = _envelope("mutation", "UpdateItem", _ITEM_SIGNATURE, f"updateItem{_ITEM_ARGS}")
MUTATION_DELETE_ITEM = _envelope("mutation", "DeleteItem", _ITEM_SIGNATURE, f"deleteItem{_ITEM_ARGS}")

MUTATION_TRANSACTION = _envelope(
    "mutation", "Transaction", "($data: AWSJSON)", "transaction(data: $data)"
)

QUERY_GENERATE_SIGNED_URL = _envelope(
    "query", "GenerateSignedUrl", "($data: AWSJSON)", "generateSignedUrl(data: $data)"
)
