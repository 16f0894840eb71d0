"""Shaping of raw backend responses into CrudifyResponse."""

from __future__ import annotations

import json
import logging
from typing import Any

from .models import CrudifyResponse, ErrorCode, ResponseStatus

logger = logging.getLogger(__name__)

DANGEROUS_KEYS = frozenset({"__proto__", "constructor", "prototype"})

_AUTH_ERROR_MARKERS = ("Unauthorized", "Invalid token")


def find_dangerous_key(value: Any) -> str | None:
    """Return the first reserved key found anywhere in a decoded JSON tree."""
    stack = [value]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            for key, child in node.items():
                if key in DANGEROUS_KEYS:
                    return key
                stack.append(child)
        elif isinstance(node, list):
            stack.extend(node)
    return None


def is_auth_error(raw: Any) -> bool:
    """Whether a raw GraphQL response signals an authorization failure."""
    if not isinstance(raw, dict):
        return False
    for error in raw.get("errors") or []:
        if not isinstance(error, dict):
            continue
        message = str(error.get("message") or "")
        if any(marker in message for marker in _AUTH_ERROR_MARKERS):
            return True
        extensions = error.get("extensions") or {}
        if isinstance(extensions, dict) and extensions.get("code") == "UNAUTHENTICATED":
            return True
    envelope = _envelope(raw)
    return envelope is not None and envelope.get("errorCode") == ErrorCode.UNAUTHORIZED.value


def _envelope(raw: dict[str, Any]) -> dict[str, Any] | None:
    data = raw.get("data")
    if not isinstance(data, dict):
        return None
    envelope = data.get("response")
    return envelope if isinstance(envelope, dict) else None


def _graphql_code(message: str) -> str:
    return message.upper().replace(" ", "_").replace(".", "")


def format_field_errors(issues: Any) -> dict[str, list[str]]:
    """Group ``[{path, message}]`` issues by the first path element."""
    errors: dict[str, list[str]] = {}
    if not isinstance(issues, list):
        return {"_error": [str(issues or "UNKNOWN_FIELD_ERROR")]}
    for issue in issues:
        if not isinstance(issue, dict):
            errors.setdefault("_error", []).append(str(issue))
            continue
        path = issue.get("path") or []
        key = str(path[0]) if path else "_error"
        errors.setdefault(key, []).append(str(issue.get("message", "")))
    return errors


def format_response(raw: Any) -> CrudifyResponse:
    """Turn a raw ``{data, errors}`` GraphQL body into a CrudifyResponse."""
    if not isinstance(raw, dict):
        return CrudifyResponse.failure("_error", "INVALID_RESPONSE_STRUCTURE")

    if raw.get("errors"):
        messages = [
            str(e.get("message") or "UNKNOWN_GRAPHQL_ERROR") if isinstance(e, dict) else str(e)
            for e in raw["errors"]
        ]
        return CrudifyResponse(
            success=False, errors={"_graphql": [_graphql_code(m) for m in messages]}
        )

    envelope = _envelope(raw)
    if envelope is None:
        logger.debug("invalid response structure")
        return CrudifyResponse.failure("_error", "INVALID_RESPONSE_STRUCTURE")

    status = envelope.get("status") or "Unknown"
    error_code = ErrorCode.parse(envelope.get("errorCode"))
    raw_data = envelope.get("data")

    data: Any
    try:
        data = json.loads(raw_data) if raw_data else None
    except (TypeError, ValueError) as e:
        logger.debug("response data is not valid JSON (status=%s): %s", status, e)
        if status in (ResponseStatus.OK.value, ResponseStatus.WARNING.value):
            return CrudifyResponse.failure("_error", "INVALID_DATA_FORMAT_IN_SUCCESSFUL_RESPONSE")
        data = {"_raw": raw_data, "_parsingError": str(e)}

    dangerous = find_dangerous_key(data)
    if dangerous is not None:
        logger.warning("response data contains a reserved key: %s", dangerous)
        return CrudifyResponse.failure("_error", "DANGEROUS_PROPERTY_DETECTED")

    if status in (ResponseStatus.OK.value, ResponseStatus.WARNING.value):
        return CrudifyResponse(
            success=True,
            data=data,
            fields_warning=envelope.get("fieldsWarning"),
            error_code=error_code,
        )
    if status == ResponseStatus.FIELD_ERROR.value:
        return CrudifyResponse(
            success=False, errors=format_field_errors(data), error_code=error_code
        )
    if status == ResponseStatus.ITEM_NOT_FOUND.value:
        return CrudifyResponse(
            success=False,
            errors={"_id": ["ITEM_NOT_FOUND"]},
            error_code=error_code or ErrorCode.ITEM_NOT_FOUND,
        )
    if status == ResponseStatus.ERROR.value:
        if isinstance(data, list):
            return CrudifyResponse(
                success=False,
                data=data,
                errors={"_transaction": ["ONE_OR_MORE_OPERATIONS_FAILED"]},
                error_code=error_code,
            )
        errors = data if isinstance(data, dict) else {"_error": [str(data or "UNKNOWN_ERROR")]}
        return CrudifyResponse(
            success=False,
            errors=errors,
            error_code=error_code or ErrorCode.INTERNAL_SERVER_ERROR,
        )
    return CrudifyResponse(
        success=False,
        errors={"_error": [str(status)]},
        error_code=error_code or ErrorCode.INTERNAL_SERVER_ERROR,
    )


def extract_token_payload(response: CrudifyResponse) -> dict[str, Any] | None:
    """Return the login/refresh payload when it carries a token."""
    if not response.success or not isinstance(response.data, dict):
        return None
    if not response.data.get("token"):
        return None
    return response.data
