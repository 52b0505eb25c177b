"""
Request Context Middleware Tests.

WHAT: Unit tests for the RequestContextMiddleware and its helpers.

WHY: Audit rows for sends, payments, deletes and restores take their IP
address and user agent from this context. These tests ensure:
- The client IP is read through proxies
- The request ID is reused or generated, and echoed back
- The context exists during the request and is gone afterwards
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from billing.middleware.request_context import (
    REQUEST_ID_HEADER,
    RequestContextMiddleware,
    get_client_ip,
    get_request_context,
    get_user_agent,
)


def _request(headers: dict = None, client_host: str = None) -> Request:
    scope = {
        "type": "http",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (client_host, 12345) if client_host else None,
    }
    return Request(scope)


class TestGetClientIp:
    """Tests for the get_client_ip function."""

    def test_x_real_ip_wins(self):
        request = _request(
            {"X-Real-IP": " 203.0.113.7 ", "X-Forwarded-For": "198.51.100.1"},
            client_host="10.0.0.2",
        )
        assert get_client_ip(request) == "203.0.113.7"

    def test_first_forwarded_address(self):
        request = _request({"X-Forwarded-For": "198.51.100.1, 10.0.0.1, 10.0.0.2"})
        assert get_client_ip(request) == "198.51.100.1"

    def test_direct_connection(self):
        assert get_client_ip(_request(client_host="2001:db8::1")) == "2001:db8::1"

    def test_unknown(self):
        assert get_client_ip(_request()) == "unknown"

    def test_user_agent(self):
        assert get_user_agent(_request({"User-Agent": "Dashboard/2.1"})) == "Dashboard/2.1"
        assert get_user_agent(_request()) is None


@pytest.fixture
def app():
    """Minimal app exposing the context seen inside a request."""
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/context")
    async def context_endpoint(request: Request):
        ctx = get_request_context()
        return {
            "request_id": ctx.request_id,
            "ip_address": ctx.ip_address,
            "user_agent": ctx.user_agent,
            "path": ctx.path,
            "method": ctx.method,
            "same_as_state": request.state.context is ctx,
        }

    return app


@pytest.mark.asyncio
class TestRequestContextMiddleware:
    """Tests for the RequestContextMiddleware class."""

    async def test_context_available_during_request(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get(
                "/context",
                headers={"X-Real-IP": "192.168.1.100", "User-Agent": "TestBrowser/1.0"},
            )

        data = response.json()
        assert data["ip_address"] == "192.168.1.100"
        assert data["user_agent"] == "TestBrowser/1.0"
        assert data["path"] == "/context"
        assert data["method"] == "GET"
        assert data["same_as_state"] is True

    async def test_generated_request_id_is_echoed(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/context")

        request_id = response.headers[REQUEST_ID_HEADER]
        # UUID4 format (36 chars with hyphens)
        assert len(request_id) == 36
        assert response.json()["request_id"] == request_id

    async def test_incoming_request_id_is_reused(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/context", headers={REQUEST_ID_HEADER: "dash-42"})

        assert response.headers[REQUEST_ID_HEADER] == "dash-42"
        assert response.json()["request_id"] == "dash-42"

    async def test_context_cleared_after_request(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            await ac.get("/context")

        assert get_request_context() is None
