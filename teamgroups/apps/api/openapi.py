from __future__ import annotations

from typing import Any

from teamgroups.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Forbidden"),
    404: _response("Not found", code="NOT_FOUND", message="Not found"),
    422: _response(
        "Validation error",
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": ["body", "name"], "msg": "Field required"}]},
    ),
    429: _response(
        "Rate limited",
        code="RATE_LIMITED",
        message="Rate limit exceeded",
        details={"action": "groups.create", "limit": 10, "retry_after_s": 1200},
    ),
    500: _response("Internal error", code="INTERNAL_ERROR", message="Internal server error"),
}
