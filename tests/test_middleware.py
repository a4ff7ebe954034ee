"""
Tests for CORS setup and the error envelope.
"""

import re

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware import (
    DEFAULT_CORS_ORIGINS,
    _build_cors_regex_pattern,
    setup_cors,
    setup_exception_handlers,
)
from casetrack.errors import InvalidStateError, NotFoundError, ValidationError


class TestCorsPattern:

    def test_no_wildcard_returns_none(self):
        assert _build_cors_regex_pattern(DEFAULT_CORS_ORIGINS) is None

    def test_wildcard_subdomain(self):
        pattern = _build_cors_regex_pattern(["https://*.firm.example", "http://localhost:3000"])
        assert re.fullmatch(pattern, "https://registry.firm.example")
        assert re.fullmatch(pattern, "http://localhost:3000")
        assert not re.fullmatch(pattern, "https://firm.example.evil.com")

    def test_env_overrides_configured_origins(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://app.firm.example")
        app = FastAPI()
        setup_cors(app, ["http://localhost:3000"])

        @app.get("/ping")
        def ping():
            return {"ok": True}

        client = TestClient(app)
        allowed = client.get("/ping", headers={"Origin": "https://app.firm.example"})
        denied = client.get("/ping", headers={"Origin": "http://localhost:3000"})
        assert allowed.headers.get("access-control-allow-origin") == "https://app.firm.example"
        assert "access-control-allow-origin" not in denied.headers


class TestErrorEnvelope:

    def _app(self):
        app = FastAPI()
        setup_exception_handlers(app)

        @app.get("/missing")
        def missing():
            raise NotFoundError("File not found: CT-2026-0404")

        @app.get("/conflict")
        def conflict():
            raise InvalidStateError("Movement already acknowledged")

        @app.get("/invalid")
        def invalid():
            raise ValidationError("Unparsable due date", field="due_date")

        @app.get("/boom")
        def boom():
            raise RuntimeError("secret connection string")

        return TestClient(app, raise_server_exceptions=False)

    def test_domain_errors_map_to_status(self):
        client = self._app()
        assert client.get("/missing").status_code == 404
        assert client.get("/conflict").status_code == 409

        response = client.get("/invalid")
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["field"] == "due_date"
        assert error["timestamp"]

    def test_unexpected_error_is_sanitized(self):
        response = self._app().get("/boom")
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
        assert "secret" not in response.text
