from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"
# Client-supplied ids longer than this are replaced so logs and audit rows stay bounded.
MAX_REQUEST_ID_LENGTH = 128

T = TypeVar("T")


def get_request_id(request: Request) -> str:
    """Return the id correlating this request's envelope, audit rows and logs.

    The first call pins the id on ``request.state``: a well-formed client header
    wins, otherwise a fresh UUID is minted.
    """
    pinned = getattr(request.state, "request_id", None)
    if pinned:
        return pinned
    supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if not supplied or len(supplied) > MAX_REQUEST_ID_LENGTH:
        supplied = str(uuid4())
    request.state.request_id = supplied
    return supplied


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)

    @classmethod
    def for_request(cls, request: Request) -> "ResponseMeta":
        return cls(request_id=get_request_id(request))


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def _envelope(request: Request, key: str, body: Any) -> dict[str, Any]:
    return {key: body, "meta": ResponseMeta.for_request(request).model_dump()}


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Route payloads are pydantic models; encode them to plain JSON types here.
    return _envelope(request, "data", jsonable_encoder(data))


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details)
    return _envelope(request, "error", error.model_dump(exclude_none=True))
