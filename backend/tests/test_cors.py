"""
Portfolio API — CORS Middleware Tests
======================================

What we test:
    ✅ Allowed origin (trailing-slash normalized) gets the full header set
    ✅ Absent origin gets the permissive defaults and continues
    ✅ Unlisted origin → ForbiddenOriginError (403)
    ✅ OPTIONS from allowed/absent origin is answered without routing
    ✅ Unlisted-origin escape hatch: origin echoed with a warning, never in development
"""

import logging

import pytest

from portfolio_api.exceptions import ForbiddenOriginError
from portfolio_api.middleware.cors import CORSMiddleware

ALLOWED = "https://allowed.example"
EVIL = "https://evil.example"


class TestCORSPolicy:

    def setup_method(self):
        self.middleware = CORSMiddleware([ALLOWED + "/"])

    @pytest.mark.asyncio
    async def test_allowed_origin_gets_cors_headers(self, envelope):
        request = envelope("GET", "/", headers={"Origin": ALLOWED})

        assert await self.middleware.handle(request) is None

        headers = request.outgoing_headers
        assert headers.get("Access-Control-Allow-Origin") == ALLOWED
        assert headers.get("Access-Control-Allow-Credentials") == "true"
        assert headers.get("Access-Control-Allow-Methods") == "GET, POST, PUT, DELETE, OPTIONS"
        assert headers.get("Access-Control-Allow-Headers") == "Content-Type, Authorization, X-Requested-With"
        assert headers.get("Access-Control-Max-Age") == "86400"
        assert headers.get("Vary") == "Origin"

    @pytest.mark.asyncio
    async def test_origin_with_trailing_slash_matches(self, envelope):
        request = envelope("GET", "/", headers={"Origin": ALLOWED + "/"})

        assert await self.middleware.handle(request) is None
        assert "access-control-allow-origin" in request.outgoing_headers

    @pytest.mark.asyncio
    async def test_absent_origin_gets_basic_headers(self, envelope):
        request = envelope("GET", "/")

        assert await self.middleware.handle(request) is None

        headers = request.outgoing_headers
        assert "Access-Control-Allow-Origin" not in headers
        assert headers.get("Access-Control-Max-Age") == "86400"

    @pytest.mark.asyncio
    async def test_unlisted_origin_is_forbidden(self, envelope, caplog):
        request = envelope("GET", "/", headers={"Origin": EVIL})

        with caplog.at_level(logging.WARNING, logger="portfolio_api.middleware.cors"):
            with pytest.raises(ForbiddenOriginError) as exc_info:
                await self.middleware.handle(request)

        assert exc_info.value.status_code == 403
        assert exc_info.value.origin == EVIL
        assert "blocked" in caplog.text

    @pytest.mark.asyncio
    async def test_preflight_answered_for_allowed_origin(self, envelope):
        request = envelope("OPTIONS", "/api/contact", headers={"Origin": ALLOWED})

        response = await self.middleware.handle(request)

        assert response.status_code == 200
        assert response.body["message"] == "CORS preflight successful"
        assert response.body["allowed_methods"] == ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
        assert response.body["allowed_headers"] == ["Content-Type", "Authorization", "X-Requested-With"]

    @pytest.mark.asyncio
    async def test_preflight_answered_without_origin(self, envelope):
        response = await self.middleware.handle(envelope("OPTIONS", "/anything"))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_preflight_from_unlisted_origin_is_forbidden(self, envelope):
        with pytest.raises(ForbiddenOriginError):
            await self.middleware.handle(envelope("OPTIONS", "/", headers={"Origin": EVIL}))


class TestUnlistedOriginEscapeHatch:

    @pytest.mark.asyncio
    async def test_passes_through_with_warning(self, envelope, caplog):
        middleware = CORSMiddleware([ALLOWED], allow_unlisted_origins=True)
        request = envelope("GET", "/", headers={"Origin": EVIL})

        with caplog.at_level(logging.WARNING, logger="portfolio_api.middleware.cors"):
            assert await middleware.handle(request) is None

        headers = request.outgoing_headers
        assert headers.get("Access-Control-Allow-Origin") == EVIL
        assert headers.get("Access-Control-Allow-Credentials") == "true"
        assert headers.get("Vary") == "Origin"
        assert EVIL in caplog.text

    @pytest.mark.asyncio
    async def test_preflight_answered_for_unlisted_origin(self, envelope):
        middleware = CORSMiddleware([ALLOWED], allow_unlisted_origins=True)
        request = envelope("OPTIONS", "/api/contact", headers={"Origin": EVIL})

        response = await middleware.handle(request)

        assert response.status_code == 200
        assert response.body["message"] == "CORS preflight successful"
        assert request.outgoing_headers.get("Access-Control-Allow-Origin") == EVIL

    def test_enabled_outside_development(self, make_settings):
        settings = make_settings(app_env="production", cors_allow_unlisted_origins=True)

        assert CORSMiddleware.from_settings(settings).allow_unlisted_origins is True

    def test_ignored_in_development(self, make_settings):
        settings = make_settings(app_env="development", cors_allow_unlisted_origins=True)

        assert CORSMiddleware.from_settings(settings).allow_unlisted_origins is False

    def test_off_by_default(self, make_settings):
        settings = make_settings(app_env="production")

        assert CORSMiddleware.from_settings(settings).allow_unlisted_origins is False


class TestAllowList:

    def test_development_adds_local_frontends(self, make_settings):
        middleware = CORSMiddleware.from_settings(make_settings(app_env="development"))

        assert middleware.is_origin_allowed("http://localhost:5173")
        assert middleware.is_origin_allowed(ALLOWED)

    def test_production_uses_configured_origins_only(self, make_settings):
        middleware = CORSMiddleware.from_settings(
            make_settings(app_env="production", allowed_origins=" https://a.example/ , https://b.example")
        )

        assert middleware.allowed_origins == frozenset({"https://a.example", "https://b.example"})
        assert not middleware.is_origin_allowed("http://localhost:5173")
