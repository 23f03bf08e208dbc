"""Tests for the error envelope and the exception-to-response mapping.

Error responses share one shape:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<text>", "details": <object|array|null>},
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from accesstoken.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from accesstoken.api.schemas import AttributesUpdateRequest, Envelope, ErrorBody
from accesstoken.service.errors import AuthenticationError, ValidationError as ServiceValidation
from accesstoken.storage.errors import StoreError


class TestEnvelope:
    def test_error_envelope_serialization(self):
        envelope = Envelope(
            status="error",
            error=ErrorBody(code="unauthorized", message="AccessToken Is Invalid"),
            request_id="req-1",
        )
        dumped = envelope.model_dump()

        assert dumped["status"] == "error"
        assert dumped["error"]["code"] == "unauthorized"
        assert dumped["error"]["details"] is None
        assert dumped["data"] is None
        assert dumped["request_id"] == "req-1"

    def test_request_id_auto_generated(self):
        """Envelope auto-generates a UUID request_id."""
        assert len(Envelope(status="ok").request_id) == 36

    def test_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="pending")


class TestErrorCodeMapping:
    def test_known_statuses(self):
        assert _error_code_for_status(400) == "validation_error"
        assert _error_code_for_status(401) == "unauthorized"
        assert _error_code_for_status(404) == "not_found"
        assert _error_code_for_status(503) == "store_unavailable"

    def test_unknown_status_defaults_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_codes_are_stable(self):
        assert set(_STATUS_TO_CODE.values()) == {
            "validation_error",
            "unauthorized",
            "forbidden",
            "not_found",
            "server_error",
            "store_unavailable",
        }

    def test_error_response_list_details(self):
        response = _error_response(400, "Multiple errors", details=[{"field": "a"}])

        data = json.loads(response.body.decode())
        assert data["error"]["details"] == [{"field": "a"}]
        assert data["status"] == "error"


class TestExceptionHandlers:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/auth")
        async def auth_failure():
            raise AuthenticationError("AccessToken Is Invalid", detail={"token": "acst:u1:x"})

        @app.get("/validation")
        async def validation_failure():
            raise ServiceValidation("UserID is Required", detail={"field": "user_id"})

        @app.get("/store")
        async def store_failure():
            raise StoreError("redis get failed", {"operation": "get"})

        @app.get("/http")
        async def http_failure():
            raise HTTPException(status_code=404, detail="missing")

        @app.get("/crash")
        async def crash():
            raise RuntimeError("boom")

        return TestClient(app, raise_server_exceptions=False)

    def test_authentication_error_hides_details(self, client):
        resp = client.get("/auth")

        assert resp.status_code == 401
        assert resp.json()["error"] == {
            "code": "unauthorized",
            "message": "AccessToken Is Invalid",
            "details": None,
        }

    def test_validation_error_keeps_details(self, client):
        resp = client.get("/validation")

        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"field": "user_id"}

    def test_store_error_is_503_without_internals(self, client):
        resp = client.get("/store")

        assert resp.status_code == 503
        error = resp.json()["error"]
        assert error["code"] == "store_unavailable"
        assert "redis" not in error["message"]

    def test_http_exception(self, client):
        resp = client.get("/http")

        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "missing"

    def test_unhandled_exception_is_500(self, client):
        resp = client.get("/crash")

        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "server_error"


class TestAttributesUpdateRequest:
    def test_too_many_keys(self):
        with pytest.raises(ValidationError):
            AttributesUpdateRequest(attributes={f"k{i}": i for i in range(65)})

    def test_too_deep(self):
        nested = current = {}
        for _ in range(25):
            current["n"] = {}
            current = current["n"]

        with pytest.raises(ValidationError):
            AttributesUpdateRequest(attributes=nested)
