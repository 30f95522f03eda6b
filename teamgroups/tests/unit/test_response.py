from __future__ import annotations

from starlette.requests import Request

from teamgroups.apps.api.presenters import UserResponse
from teamgroups.apps.api.response import (
    MAX_REQUEST_ID_LENGTH,
    error_response,
    get_request_id,
    success_response,
)


def _request(headers: dict[str, str] | None = None) -> Request:
    raw_headers = [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()]
    return Request({"type": "http", "method": "POST", "path": "/v1/groups.list", "headers": raw_headers})


def test_client_request_id_is_pinned_for_the_request() -> None:
    request = _request({"X-Request-Id": "req-42"})

    assert get_request_id(request) == "req-42"
    assert request.state.request_id == "req-42"


def test_oversized_or_blank_request_ids_are_replaced() -> None:
    oversized = _request({"X-Request-Id": "x" * (MAX_REQUEST_ID_LENGTH + 1)})
    blank = _request({"X-Request-Id": "   "})

    assert len(get_request_id(oversized)) == 36
    assert get_request_id(blank) != "   "
    assert get_request_id(blank) == blank.state.request_id


def test_success_response_encodes_models() -> None:
    request = _request({"X-Request-Id": "req-7"})
    user = UserResponse(id="u1", name="Ada", email=None, team_id="t1")

    payload = success_response(request=request, data={"users": [user]})

    assert payload == {
        "data": {"users": [{"id": "u1", "name": "Ada", "email": None, "team_id": "t1"}]},
        "meta": {"request_id": "req-7", "api_version": "v1"},
    }


def test_error_response_omits_empty_details() -> None:
    request = _request({"X-Request-Id": "req-8"})

    bare = error_response(request=request, code="NOT_FOUND", message="Not found")
    detailed = error_response(
        request=request, code="RATE_LIMITED", message="Rate limit exceeded", details={"limit": 10}
    )

    assert bare["error"] == {"code": "NOT_FOUND", "message": "Not found"}
    assert detailed["error"]["details"] == {"limit": 10}
    assert detailed["meta"]["request_id"] == "req-8"
