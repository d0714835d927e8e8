"""Tests for auth/dependencies.py -- the FastAPI adapters around AuthGate.

The dependencies are called directly with a bare Starlette Request so the
request.state side effect can be inspected.
"""

from __future__ import annotations

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from auth.dependencies import get_current_payload, try_get_current_payload
from auth.errors import AuthenticationRequired
from auth.models import Role, TokenKind


def _request(client: TestClient, authorization: str | None = None) -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization is not None else []
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": headers,
            "client": ("10.0.0.1", 1234),
            "app": client.app,
        }
    )


def test_try_get_current_payload_without_header(api_client: TestClient) -> None:
    request = _request(api_client)
    assert try_get_current_payload(request) is None
    assert request.state.token_payload is None


def test_try_get_current_payload_with_garbage_token(api_client: TestClient) -> None:
    request = _request(api_client, "Bearer garbage")
    assert try_get_current_payload(request) is None
    assert request.state.token_payload is None


def test_try_get_current_payload_with_valid_token(api_client: TestClient) -> None:
    token = api_client.app.state.tokens.mint("user-1", "a@b.com", Role.moderator, TokenKind.access)
    request = _request(api_client, f"Bearer {token}")
    payload = try_get_current_payload(request)
    assert payload is not None
    assert payload.sub == "user-1"
    assert request.state.token_payload is payload


def test_get_current_payload_raises_without_header(api_client: TestClient) -> None:
    with pytest.raises(AuthenticationRequired):
        get_current_payload(_request(api_client))
