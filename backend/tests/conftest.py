"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite) shared by every
session of a test through a StaticPool, so the gateway's own units of work
see rows committed by test setup. Vendor HTTP calls go to an
httpx.MockTransport stub; no test touches the network.

Because all sessions share one connection, setup helpers commit before
the code under test runs, and assertions re-read rows with
``db_session.expire_all()`` or fresh queries.
"""

import json
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.models.base import Base
from app.models.catalog import Feature, Provider
from app.models.entitlement import Subscription, UserAccess
from app.models.ledger import CreditBalance
from app.providers.registry import AdapterRegistry

TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Identity used by the tenant-facing API client
TEST_TENANT_ID = "tenant-a"
TEST_USER_ID = "user-1"

# Security: This is a test-only secret. Production reads ADMIN_API_TOKEN from env.
TEST_ADMIN_TOKEN = "test-admin-token-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow

# Fixed instant for deterministic clocks (a Wednesday, mid-month)
FIXED_NOW = datetime(2025, 3, 12, 15, 30, tzinfo=UTC)

# Default vendor answer in the chat-completions shape
CHAT_COMPLETION_BODY: dict[str, Any] = {
    "id": "chatcmpl-test",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello!"}}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
}


# =============================================================================
# Clock
# =============================================================================


class MutableClock:
    """Injectable clock that tests can move forward."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        """Move the clock forward by a timedelta(**kwargs)."""
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    """Clock starting at FIXED_NOW."""
    return MutableClock()


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory test database with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Vendor stub
# =============================================================================


class VendorStub:
    """Fake vendor API behind an httpx.MockTransport.

    Records every request. Answers with ``body``/``status_code``, or raises
    ``error`` (e.g. httpx.ConnectTimeout) when set.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.body: Any = CHAT_COMPLETION_BODY
        self.error: Exception | None = None
        self.transport = httpx.MockTransport(self._handle)

    def respond(self, body: Any, status_code: int = 200) -> None:
        """Answer subsequent requests with this body and status."""
        self.body = body
        self.status_code = status_code
        self.error = None

    def fail_with(self, error: Exception) -> None:
        """Raise this transport error for subsequent requests."""
        self.error = error

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> Any:
        """Decoded JSON body of the most recent request."""
        return json.loads(self.last_request.content)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def vendor() -> VendorStub:
    """Vendor stub answering with a chat-completions body."""
    return VendorStub()


@pytest.fixture
def registry(vendor: VendorStub) -> AdapterRegistry:
    """Adapter registry whose adapters all talk to the vendor stub."""
    return AdapterRegistry(transport=vendor.transport, timeout=5.0)


# =============================================================================
# Data builders
# =============================================================================


async def make_provider(
    db: AsyncSession,
    *,
    provider_type: str = "chat_completions",
    status: str = "active",
    api_key: str | None = "sk-test-key-1234",
    **fields: Any,
) -> Provider:
    """Create and commit a provider (active by default)."""
    fields.setdefault("provider_name", f"provider-{uuid.uuid4().hex[:8]}")
    fields.setdefault("display_name", "Test Provider")
    provider = Provider(
        provider_type=provider_type,
        status=status,
        api_key=api_key,
        **fields,
    )
    db.add(provider)
    await db.commit()
    await db.refresh(provider)
    return provider


async def make_feature(
    db: AsyncSession,
    provider: Provider,
    *,
    status: str = "published",
    credits_per_use: int | None = 10,
    **fields: Any,
) -> Feature:
    """Create and commit a feature (published by default)."""
    fields.setdefault("feature_key", f"feature_{uuid.uuid4().hex[:8]}")
    fields.setdefault("display_name", "Test Feature")
    fields.setdefault("category", "summarization")
    feature = Feature(
        provider_id=provider.id,
        provider=provider,
        status=status,
        credits_per_use=credits_per_use,
        **fields,
    )
    db.add(feature)
    await db.commit()
    await db.refresh(feature)
    return feature


async def subscribe(
    db: AsyncSession,
    feature: Feature,
    tenant_id: str = TEST_TENANT_ID,
    **fields: Any,
) -> Subscription:
    """Create and commit a tenant subscription to a feature."""
    subscription = Subscription(tenant_id=tenant_id, feature_id=feature.id, **fields)
    db.add(subscription)
    await db.commit()
    await db.refresh(subscription)
    return subscription


async def grant_user_access(
    db: AsyncSession,
    feature: Feature,
    user_id: str = TEST_USER_ID,
    tenant_id: str = TEST_TENANT_ID,
    **fields: Any,
) -> UserAccess:
    """Create and commit a per-user access override."""
    access = UserAccess(user_id=user_id, tenant_id=tenant_id, feature_id=feature.id, **fields)
    db.add(access)
    await db.commit()
    await db.refresh(access)
    return access


async def fund(
    db: AsyncSession,
    tenant_id: str = TEST_TENANT_ID,
    balance: int = 1000,
    *,
    low_balance_threshold: int = 100,
) -> CreditBalance:
    """Create and commit a balance row as if the tenant bought ``balance`` credits."""
    row = CreditBalance(
        tenant_id=tenant_id,
        balance=balance,
        total_purchased=balance,
        total_used=0,
        low_balance_threshold=low_balance_threshold,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


# =============================================================================
# API clients
# =============================================================================


@pytest_asyncio.fixture
async def api_app(
    session_factory: async_sessionmaker[AsyncSession],
    registry: AdapterRegistry,
):
    """FastAPI app wired to the test database and vendor stub.

    Sets the admin token and disables rate limiting for the duration of
    the test.
    """
    from app.core.database import get_db, get_session_factory
    from app.core.rate_limiting import limiter
    from app.main import app
    from app.providers.registry import get_adapter_registry

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_adapter_registry] = lambda: registry

    original_admin_token = settings.admin_api_token
    original_limiter_enabled = limiter.enabled
    settings.admin_api_token = SecretStr(TEST_ADMIN_TOKEN)
    limiter.enabled = False

    yield app

    settings.admin_api_token = original_admin_token
    limiter.enabled = original_limiter_enabled
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(api_app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client carrying the tenant identity headers."""
    async with AsyncClient(
        transport=ASGITransport(app=api_app),
        base_url="http://test",
        headers={
            settings.tenant_header: TEST_TENANT_ID,
            settings.user_header: TEST_USER_ID,
        },
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_client(api_app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client carrying the admin token."""
    async with AsyncClient(
        transport=ASGITransport(app=api_app),
        base_url="http://test",
        headers={settings.admin_token_header: TEST_ADMIN_TOKEN},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anonymous_client(api_app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client without identity or admin headers."""
    async with AsyncClient(
        transport=ASGITransport(app=api_app),
        base_url="http://test",
    ) as ac:
        yield ac
