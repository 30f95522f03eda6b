from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from teamgroups.apps.api.response import error_response
from teamgroups.core.errors import (
    AuthorizationError,
    DatabaseError,
    NotFoundError,
    ProvisioningPayloadError,
    TeamGroupsError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Handles both FastAPI and Starlette HTTPException subclasses.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


# Messages stay generic so responses never reveal which field or row caused the failure.
_DOMAIN_ERRORS: list[tuple[type[TeamGroupsError], int, str, str]] = [
    (NotFoundError, 404, "NOT_FOUND", "Not found"),
    (AuthorizationError, 403, "AUTH_FORBIDDEN", "Forbidden"),
    (DatabaseError, 500, "INTERNAL_ERROR", "Internal server error"),
]


async def domain_exception_handler(request: Request, exc: TeamGroupsError) -> JSONResponse:
    if isinstance(exc, ProvisioningPayloadError):
        payload = error_response(
            request=request,
            code="PROVISIONING_PAYLOAD_INVALID",
            message=str(exc),
        )
        return JSONResponse(content=payload, status_code=422)
    for error_type, status_code, code, message in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            payload = error_response(request=request, code=code, message=message)
            return JSONResponse(content=payload, status_code=status_code)
    return await unhandled_exception_handler(request, exc)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
