"""
Tests for middleware modules
"""

import json
import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from starlette.middleware.sessions import SessionMiddleware

from app.config import settings
from app.middleware.attribution import AttributionMiddleware
from app.middleware.logging import RequestIdFilter, StructuredFormatter, StructuredLoggingMiddleware, get_client_ip
from app.middleware.visitor import VISITOR_ID_PATTERN, VisitorMiddleware, new_visitor_id
from app.services.attribution_service import SESSION_KEY


def make_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(AttributionMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(VisitorMiddleware)
    app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)

    @app.get("/landing")
    async def landing(request: Request):
        return {"visitor_id": request.state.visitor_id, "stored": request.session.get(SESSION_KEY)}

    @app.get("/api/v1/thing")
    async def api_thing(request: Request):
        return {"stored": request.session.get(SESSION_KEY)}

    @app.post("/landing")
    async def post_landing(request: Request):
        return {"stored": request.session.get(SESSION_KEY)}

    return app


class TestVisitorMiddleware:
    def test_new_visitor_gets_cookie(self):
        client = TestClient(make_app())

        response = client.get("/landing")

        visitor_id = response.json()["visitor_id"]
        assert VISITOR_ID_PATTERN.match(visitor_id)
        assert response.cookies["visitor_id"] == visitor_id
        header = next(h for h in response.headers.get_list("set-cookie") if h.startswith("visitor_id="))
        assert "HttpOnly" in header
        assert "SameSite=lax" in header

    def test_returning_visitor_keeps_id(self):
        client = TestClient(make_app())
        client.cookies.set("visitor_id", "returning-visitor-1")

        response = client.get("/landing")

        assert response.json()["visitor_id"] == "returning-visitor-1"
        assert not any(h.startswith("visitor_id=") for h in response.headers.get_list("set-cookie"))

    def test_malformed_cookie_is_replaced(self):
        client = TestClient(make_app())
        client.cookies.set("visitor_id", "<script>")

        visitor_id = client.get("/landing").json()["visitor_id"]

        assert visitor_id != "<script>"
        assert VISITOR_ID_PATTERN.match(visitor_id)

    def test_new_ids_are_unique(self):
        assert new_visitor_id() != new_visitor_id()


class TestAttributionMiddleware:
    def test_page_request_is_captured(self):
        client = TestClient(make_app())

        client.get("/landing?utm_source=google&utm_medium=cpc")
        stored = json.loads(client.get("/landing").json()["stored"])

        assert stored["utm_source"] == "google"
        assert stored["landing_page"] == "/landing"

    def test_api_paths_are_skipped(self):
        client = TestClient(make_app())

        assert client.get("/api/v1/thing?utm_source=google").json()["stored"] is None

    def test_only_get_requests_are_captured(self):
        client = TestClient(make_app())

        assert client.post("/landing?utm_source=google").json()["stored"] is None

    def test_click_ids_require_consent_cookie(self):
        client = TestClient(make_app())

        client.get("/landing?gclid=g-1&utm_source=google")
        without = json.loads(client.get("/landing").json()["stored"])

        consented = TestClient(make_app())
        consented.cookies.set("consent", "full")
        consented.get("/landing?gclid=g-1&utm_source=google")
        with_consent = json.loads(consented.get("/landing").json()["stored"])

        assert "gclid" not in without
        assert with_consent["gclid"] == "g-1"


class TestStructuredLogging:
    def test_request_id_is_echoed(self):
        client = TestClient(make_app())

        response = client.get("/landing", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self):
        response = TestClient(make_app()).get("/landing")

        assert response.headers["X-Request-ID"]

    def test_formatter_includes_dispatch_context(self):
        record = logging.LogRecord("app.platforms.base", logging.ERROR, __file__, 1, "dispatch failed", None, None)
        record.platform = "meta"
        record.status_code = 503
        record.attempt = 3
        RequestIdFilter().filter(record)

        data = json.loads(StructuredFormatter().format(record))

        assert data["level"] == "ERROR"
        assert data["message"] == "dispatch failed"
        assert data["platform"] == "meta"
        assert data["status_code"] == 503
        assert data["attempt"] == 3
        assert "event_name" not in data

    def test_client_ip_prefers_forwarded_header(self):
        app = FastAPI()

        @app.get("/ip")
        async def ip(request: Request):
            return {"ip": get_client_ip(request)}

        response = TestClient(app).get("/ip", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        assert response.json()["ip"] == "203.0.113.7"
