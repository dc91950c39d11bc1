"""API test fixtures: the app wired to the in-memory database and stub provider."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from shop4me.api.app import create_app
from shop4me.api.dependencies import get_app_settings, get_clock, get_db_session
from shop4me.config import MpesaConfig, Settings
from shop4me.services.principals import Identity, PrincipalProvider

CRON_SECRET = "test-cron-secret"

# The first registered user becomes admin, so the admin is registered up front
ADMIN_HEADERS = {"X-User-Id": "idp|admin", "X-User-Email": "admin@shop4me.test"}
CUSTOMER_HEADERS = {"X-User-Id": "idp|wanjiru", "X-User-Email": "wanjiru@shop4me.test"}
OTHER_CUSTOMER_HEADERS = {"X-User-Id": "idp|otieno", "X-User-Phone": "254722000111"}


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        host="127.0.0.1",
        port=8000,
        debug=True,
        log_level="DEBUG",
        cron_secret=CRON_SECRET,
        mpesa=MpesaConfig(environment="stub"),
    )


@pytest_asyncio.fixture
async def app(session_factory, test_settings, clock, stub_provider) -> FastAPI:
    """Application with database, settings, clock and provider overridden."""
    async with session_factory() as session:
        await PrincipalProvider(session).ensure_principal(
            Identity(ADMIN_HEADERS["X-User-Id"], email=ADMIN_HEADERS["X-User-Email"])
        )

    async def _db_session() -> AsyncGenerator:
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_db_session] = _db_session
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.provider = stub_provider
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
