"""
Portfolio API — End-to-End Pipeline Tests
==========================================

What we test (through the FastAPI host, in-process via HTTPX):
    ✅ Default middleware order: request id, CORS, security, rate limit
    ✅ Unknown routes → 404 JSON; unexpected faults → 500 (details by environment)
    ✅ Rate limiting with Retry-After
    ✅ Health check and service descriptor
    ✅ Contact form: submit, list, detail, stats, validation
"""

from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from portfolio_api.database import Database
from portfolio_api.main import create_app

ALLOWED_ORIGIN = "https://allowed.example"

VALID_CONTACT = {
    "name": "Ada Lovelace",
    "email": "Ada@Example.com",
    "subject": "Analytical engine",
    "message": "I would like to discuss a project with you.",
}


@pytest_asyncio.fixture
async def make_client(make_settings):
    """Client factory for apps with non-default settings."""
    databases = []
    clients = []

    async def factory(**overrides):
        settings = make_settings(**overrides)
        database = Database.from_settings(settings)
        await database.create_tables()
        databases.append(database)
        app = create_app(settings, database=database)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return app, client

    yield factory

    for client in clients:
        await client.aclose()
    for database in databases:
        await database.dispose()


class TestPipeline:

    @pytest.mark.asyncio
    async def test_unknown_route_is_json_404(self, client):
        response = await client.get("/nope")

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        body = response.json()
        assert body["error"] is True
        assert body["message"] == "Route not found: GET /nope"

    @pytest.mark.asyncio
    async def test_every_response_carries_hardening_headers(self, client):
        response = await client.get("/nope")

        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["server"] == "Portfolio-API"
        assert len(response.headers["x-request-id"]) == 8

    @pytest.mark.asyncio
    async def test_client_request_id_is_echoed(self, client):
        response = await client.get("/", headers={"X-Request-ID": "trace-123"})

        assert response.headers["x-request-id"] == "trace-123"

    @pytest.mark.asyncio
    async def test_development_fault_includes_debug(self, app, client):
        def boom():
            raise RuntimeError("disk on fire")

        app.state.router.get("/boom", boom)

        response = await client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "disk on fire"
        assert body["debug"]["type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_production_fault_is_generic(self, make_client):
        def boom():
            raise RuntimeError("password=hunter2")

        app, client = await make_client(app_env="production")
        app.state.router.get("/boom", boom)

        response = await client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Internal server error"
        assert "debug" not in body
        assert "hunter2" not in response.text


class TestCORSEndToEnd:

    @pytest.mark.asyncio
    async def test_unlisted_origin_is_403(self, client):
        response = await client.get("/", headers={"Origin": "https://evil.example"})

        assert response.status_code == 403
        body = response.json()
        assert body["message"] == "CORS: Origin not allowed"
        assert body["origin"] == "https://evil.example"
        assert "x-request-id" in response.headers

    @pytest.mark.asyncio
    async def test_allowed_origin_is_echoed(self, client):
        response = await client.get("/", headers={"Origin": ALLOWED_ORIGIN})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
        assert response.headers["access-control-allow-credentials"] == "true"

    @pytest.mark.asyncio
    async def test_preflight_answered_before_routing(self, client):
        response = await client.options("/api/contact")

        assert response.status_code == 200
        assert response.json()["message"] == "CORS preflight successful"

    @pytest.mark.asyncio
    async def test_escape_hatch_in_production(self, make_client):
        _, client = await make_client(app_env="production", cors_allow_unlisted_origins=True)

        response = await client.get("/", headers={"Origin": "https://unlisted.example"})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://unlisted.example"


class TestSecurityEndToEnd:

    @pytest.mark.asyncio
    async def test_injection_rejected(self, client):
        payload = dict(VALID_CONTACT, message="<script>alert(1)</script>")

        response = await client.post("/api/contact", json=payload)

        assert response.status_code == 400
        assert response.json()["error_code"] == "suspicious_input"


class TestRateLimitEndToEnd:

    @pytest.mark.asyncio
    async def test_third_request_is_429(self, make_client):
        _, client = await make_client(rate_limit_requests=2, rate_limit_window=60)

        statuses = [(await client.get("/")).status_code for _ in range(2)]
        limited = await client.get("/")

        assert statuses == [200, 200]
        assert limited.status_code == 429
        assert limited.headers["retry-after"] == "60"
        assert limited.json()["retry_after"] == 60

    @pytest.mark.asyncio
    async def test_health_never_limited(self, make_client):
        _, client = await make_client(rate_limit_requests=1, rate_limit_window=60)

        for _ in range(3):
            assert (await client.get("/health")).status_code == 200

    @pytest.mark.asyncio
    async def test_second_contact_submission_is_429(self, make_client):
        _, client = await make_client(contact_rate_limit=1, contact_rate_window=900)

        first = await client.post("/api/contact", json=VALID_CONTACT)
        second = await client.post("/api/contact", json=VALID_CONTACT)

        assert first.status_code == 201
        assert second.status_code == 429
        assert second.headers["retry-after"] == "900"
        assert second.json()["message"] == "Too many contact form submissions. Please try again later."


class TestHealthAndDescriptor:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["environment"] == "development"

    @pytest.mark.asyncio
    async def test_descriptor_lists_routes(self, client):
        response = await client.get("/")

        endpoints = response.json()["endpoints"]
        assert {"method": "GET", "path": "/health"} in endpoints
        assert {"method": "POST", "path": "/api/contact"} in endpoints
        assert {"method": "GET", "path": "/api/contact/messages/{id}"} in endpoints


class TestContactFlow:

    @pytest.mark.asyncio
    async def test_submit_then_read_back(self, client):
        created = await client.post("/api/contact", json=VALID_CONTACT)

        assert created.status_code == 201
        data = created.json()["data"]
        assert data["id"] == 1
        assert data["emailSent"] is False
        assert data["emailConfigured"] is False

        listing = (await client.get("/api/contact/messages")).json()
        assert listing["pagination"]["total"] == 1
        assert listing["messages"][0]["subject"] == "Analytical engine"

        detail = (await client.get("/api/contact/messages/1")).json()["data"]
        assert detail["email"] == "ada@example.com"
        assert detail["ip_address"] == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_form_encoded_submission(self, client):
        response = await client.post("/api/contact", data=VALID_CONTACT)

        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_invalid_submission_lists_errors(self, client):
        response = await client.post("/api/contact", json={"name": "A"})

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "validation_error"
        assert "Field 'email' is required and must be a string" in body["errors"]

    @pytest.mark.asyncio
    async def test_missing_message_is_404(self, client):
        response = await client.get("/api/contact/messages/999")

        assert response.status_code == 404
        assert response.json()["message"] == "Contact message not found"

    @pytest.mark.asyncio
    async def test_non_numeric_id_is_400(self, client):
        response = await client.get("/api/contact/messages/abc")

        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message_id", ["99999999999999999999999", "0", "-3"])
    async def test_id_outside_key_range_is_404(self, client, message_id):
        response = await client.get(f"/api/contact/messages/{message_id}")

        assert response.status_code == 404
        assert response.json()["message"] == "Contact message not found"

    @pytest.mark.asyncio
    async def test_multiline_subject_with_smtp_provider(self, make_client):
        _, client = await make_client(
            email_provider="smtp",
            smtp_host="smtp.example.com",
            smtp_username="mailer",
            smtp_password="secret",
            contact_to_email="owner@example.com",
            contact_from_email="noreply@example.com",
        )
        payload = dict(VALID_CONTACT, subject="Analytical\nengine")

        with patch("portfolio_api.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp_cls.return_value.__enter__.return_value = smtp

            response = await client.post("/api/contact", json=payload)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["emailConfigured"] is True
        assert data["emailSent"] is True
        assert smtp.send_message.call_args.args[0]["Subject"] == "Portfolio Contact: Analytical engine"

    @pytest.mark.asyncio
    async def test_stats(self, client):
        await client.post("/api/contact", json=VALID_CONTACT)

        stats = (await client.get("/api/contact/stats")).json()["stats"]

        assert stats["total_messages"] == 1
        assert stats["top_domains"][0]["domain"] == "example.com"

    @pytest.mark.asyncio
    async def test_email_self_test_without_configuration(self, client):
        response = await client.get("/api/contact/test")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Missing configuration:")
