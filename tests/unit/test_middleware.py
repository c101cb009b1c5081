"""
Tests for request logging middleware (queen/api/middleware.py).

Covers:
  - Request ID generation and propagation
  - X-GitHub-Delivery reuse as the request ID
  - Context variables cleared after each request
  - Error propagation
"""

import pytest
import structlog
from fastapi import FastAPI
from starlette.testclient import TestClient

from queen.api.middleware import RequestLoggingMiddleware
from queen.utils.logging import clear_contextvars, setup_logging


@pytest.fixture(autouse=True)
def _reset_context():
    """Clear context vars between tests."""
    clear_contextvars()
    yield
    clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def test_app():
    """Create a minimal FastAPI app with the logging middleware."""
    setup_logging(log_level="DEBUG", environment="development")

    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/context")
    async def api_context():
        return structlog.contextvars.get_contextvars()

    @app.get("/api/error")
    async def api_error():
        raise ValueError("test error")

    return app


@pytest.fixture
def client(test_app):
    return TestClient(test_app, raise_server_exceptions=False)


class TestRequestIdPropagation:
    def test_response_has_generated_request_id(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Request-ID"].startswith("req-")

    def test_existing_request_id_preserved(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "custom-id-123"})
        assert resp.headers["X-Request-ID"] == "custom-id-123"

    def test_delivery_id_reused(self, client):
        resp = client.get("/health", headers={"X-GitHub-Delivery": "72d3162e-cc78"})
        assert resp.headers["X-Request-ID"] == "72d3162e-cc78"

    def test_unique_request_ids(self, client):
        ids = {client.get("/health").headers["X-Request-ID"] for _ in range(10)}
        assert len(ids) == 10


class TestRequestContext:
    def test_context_bound_during_request(self, client):
        resp = client.get("/api/context", headers={"X-Request-ID": "ctx-1"})
        assert resp.json() == {"request_id": "ctx-1", "method": "GET", "path": "/api/context"}

    def test_error_endpoint_returns_500(self, client):
        resp = client.get("/api/error")
        assert resp.status_code == 500
