"""
Pytest fixtures for the fulfillment test suite.

Provides:
- An in-memory SQLite database (aiosqlite, StaticPool) per test
- Actors for every role
- An httpx client bound to the FastAPI app with get_db overridden
"""
import logging
import uuid

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fulfillment import models  # noqa: F401
from fulfillment.core.permissions import Actor, Role
from fulfillment.database import Base, build_engine, get_db
from fulfillment.logging_config import configure_logging, reset_logging

from tests import factories


# =============================================================================
# Logging
# =============================================================================

@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level="DEBUG")
    yield
    reset_logging()


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Tenants and actors
# =============================================================================

@pytest.fixture
async def business(db):
    return await factories.make_business(db, name="Acme Gadgets")


@pytest.fixture
async def other_business(db):
    return await factories.make_business(db, name="Globex Supplies")


@pytest.fixture
def admin():
    return Actor(user_id=uuid.uuid4(), role=Role.ADMIN)


@pytest.fixture
async def merchant_user(db, business):
    return await factories.make_user(db, role=Role.MERCHANT, business_id=business.id)


@pytest.fixture
def merchant(merchant_user, business):
    return Actor(user_id=merchant_user.id, role=Role.MERCHANT, business_id=business.id)


@pytest.fixture
def other_merchant(other_business):
    return Actor(user_id=uuid.uuid4(), role=Role.MERCHANT, business_id=other_business.id)


@pytest.fixture
async def logistics_user(db):
    return await factories.make_user(db, role=Role.LOGISTICS, email="driver1@example.com")


@pytest.fixture
async def other_logistics_user(db):
    return await factories.make_user(db, role=Role.LOGISTICS, email="driver2@example.com")


@pytest.fixture
def logistics(logistics_user):
    return Actor(user_id=logistics_user.id, role=Role.LOGISTICS)


@pytest.fixture
def other_logistics(other_logistics_user):
    return Actor(user_id=other_logistics_user.id, role=Role.LOGISTICS)


@pytest.fixture
async def warehouse(db):
    return await factories.make_warehouse(db, name="North Hub", code="NOR001", region="North")


@pytest.fixture
async def second_warehouse(db):
    return await factories.make_warehouse(db, name="South Hub", code="SOU001", region="South")


@pytest.fixture
async def product(db, business):
    return await factories.make_product(db, business, name="Wireless Mouse", sku="MOUSE-1")


# =============================================================================
# HTTP client
# =============================================================================

@pytest.fixture
async def client(session_factory):
    from fulfillment.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def headers_for(actor: Actor) -> dict:
    """Identity headers the upstream provider would forward."""
    headers = {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role.value}
    if actor.business_id:
        headers["X-Business-Id"] = str(actor.business_id)
    return headers


@pytest.fixture
def caplog_fulfillment(caplog):
    caplog.set_level(logging.DEBUG, logger="fulfillment")
    return caplog
