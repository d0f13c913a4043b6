"""
Unit tests for request context, rate limiting and error envelope middleware
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.testclient import TestClient
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from api.middleware import ErrorEnvelopeMiddleware, RateLimitMiddleware, RequestContextMiddleware


def request_from(host: str, path: str = "/ping") -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": [],
        "client": (host, 50000),
    })


async def ok(request):
    return PlainTextResponse("ok")


def build_app(limit_per_minute: int = 0) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limit_per_minute=limit_per_minute)
    app.add_middleware(RequestContextMiddleware)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


class TestRequestContextMiddleware:

    def test_generates_request_id_and_latency(self):
        client = TestClient(build_app())

        response = client.get("/ping")

        assert response.status_code == 200
        assert response.headers["X-Request-ID"]
        assert int(response.headers["X-API-Latency-ms"]) >= 0

    def test_echoes_incoming_request_id(self):
        client = TestClient(build_app())

        response = client.get("/ping", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


class TestRateLimitMiddleware:

    def test_disabled_by_default(self):
        client = TestClient(build_app())

        assert all(client.get("/ping").status_code == 200 for _ in range(10))

    def test_limit_exceeded(self):
        """Test the request over the limit gets the 429 envelope"""
        client = TestClient(build_app(limit_per_minute=2))

        statuses = [client.get("/ping").status_code for _ in range(2)]
        blocked = client.get("/ping")

        assert statuses == [200, 200]
        assert blocked.status_code == 429
        assert blocked.json()["error"] == "Rate limit exceeded"
        assert blocked.json()["details"]["limit_per_minute"] == 2
        assert 1 <= int(blocked.headers["Retry-After"]) <= 60

    @pytest.mark.parametrize("path", ["/health", "/openapi.json"])
    def test_exempt_paths(self, path):
        client = TestClient(build_app(limit_per_minute=1))

        assert all(client.get(path).status_code == 200 for _ in range(3))

    @pytest.mark.asyncio
    async def test_past_windows_are_evicted(self):
        """Test counters from an earlier minute are dropped, not kept forever"""
        limiter = RateLimitMiddleware(build_app(), limit_per_minute=1)

        with patch("api.middleware.time.time", return_value=600.0):
            for host in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
                await limiter.dispatch(request_from(host), ok)
            blocked = await limiter.dispatch(request_from("10.0.0.1"), ok)

        assert blocked.status_code == 429
        assert set(limiter._windows) == {"10.0.0.1", "10.0.0.2", "10.0.0.3"}

        with patch("api.middleware.time.time", return_value=660.0):
            response = await limiter.dispatch(request_from("10.0.0.1"), ok)

        assert response.status_code == 200
        assert limiter._windows == {"10.0.0.1": (11, 1)}


class TestErrorEnvelopeMiddleware:

    def test_unhandled_error_keeps_cors_headers(self):
        """Test a crash answers 500 with the envelope and CORS headers"""
        app = FastAPI()
        app.add_middleware(ErrorEnvelopeMiddleware)
        app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

        @app.get("/crash")
        async def crash():
            raise RuntimeError("boom")

        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/crash", headers={"Origin": "https://dashboard.example.com"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "details": {"message": "boom"}}
        assert response.headers["access-control-allow-origin"] == "*"
