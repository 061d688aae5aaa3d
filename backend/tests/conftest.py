"""
Portfolio API — Test Configuration (conftest.py)
=================================================

What:  Shared pytest fixtures for the whole suite.
How:   Every test gets its own settings pointing at a temporary rate-limit
       store and a temporary SQLite database, so tests never share state.

Fixture Hierarchy (all function-scoped):
    settings ─┬─ database ── app ── client
              └─ make_settings (factory for per-test overrides)
    envelope:  factory for hand-built RequestEnvelopes
    clock:     controllable epoch clock for the rate limiter
"""

import os
from typing import Any, Callable, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Keep the real environment and any local .env out of the test settings
os.environ["LOG_LEVEL"] = "WARNING"

from portfolio_api.config import Settings  # noqa: E402
from portfolio_api.core.envelope import RequestEnvelope  # noqa: E402
from portfolio_api.database import Database  # noqa: E402
from portfolio_api.main import create_app  # noqa: E402

ALLOWED_ORIGIN = "https://allowed.example"


class FakeClock:
    """Epoch clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    """Build Settings isolated to this test's tmp_path, with overrides."""

    def factory(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "app_env": "development",
            "log_level": "WARNING",
            "allowed_origins": ALLOWED_ORIGIN,
            "rate_limit_storage_path": str(tmp_path / "rate_limits.json"),
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'portfolio.db'}",
            "storage_root": str(tmp_path),
            "emailjs_service_id": "",
            "emailjs_template_id": "",
            "emailjs_public_key": "",
            "emailjs_private_key": "",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def database(settings):
    """SQLite database with the schema created; disposed after the test."""
    db = Database.from_settings(settings)
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
def app(settings, database):
    return create_app(settings, database=database)


@pytest_asyncio.fixture
async def client(app):
    """
    HTTPX AsyncClient talking to the app in-process.

    The transport reports the peer as 127.0.0.1, so without proxy headers
    every request comes from the same client IP.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def envelope() -> Callable[..., RequestEnvelope]:
    def factory(method: str = "GET", path: str = "/", **kwargs: Any) -> RequestEnvelope:
        kwargs.setdefault("client_ip", "203.0.113.7")
        return RequestEnvelope(method=method, path=path, **kwargs)

    return factory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
