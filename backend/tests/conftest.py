"""Pytest configuration and fixtures for the warehouse backend tests.

Provides an in-memory SQLite database, an API client bound to the same
session, JWT headers and seed helpers for pallets, positions and products.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("CACHE_BACKEND", "memory")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.jwt import create_access_token
from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.models.warehouse import PackagingType, Pallet, Position, Product
from app.services.runtime import init_app_state


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session shared by the test body and the API client."""
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_runtime_state():
    """New caches and rate limiter for every test."""
    init_app_state(app, "memory")
    yield


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database dependency."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Auth Fixtures ────────────────────────────────────────────────

@pytest.fixture
def test_token() -> str:
    return create_access_token(user_id="user-1", role="supervisor")


@pytest.fixture
def auth_headers(test_token: str) -> dict:
    """Create authorization headers with test token."""
    return {"Authorization": f"Bearer {test_token}"}


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token(user_id="admin-1", role="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def operator_headers() -> dict:
    token = create_access_token(user_id="op-1", role="operator")
    return {"Authorization": f"Bearer {token}"}


# ── Seed helpers ─────────────────────────────────────────────────

class Seeder:
    """Commits rows so services start their own transactions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def pallet(self, **kwargs) -> Pallet:
        values = {
            "code": f"PLT-{self._next():03d}",
            "width": 100.0,
            "length": 120.0,
            "max_weight": 1000.0,
            "status": "disponivel",
        }
        values.update(kwargs)
        return await self._save(Pallet(**values))

    async def position(self, **kwargs) -> Position:
        n = self._next()
        values = {
            "code": f"RUA01-E-A{n:02d}-N01",
            "street": "RUA01",
            "side": "E",
            "position": n,
            "level": 1,
            "status": "disponivel",
        }
        values.update(kwargs)
        return await self._save(Position(**values))

    async def product(self, **kwargs) -> Product:
        """Defaults: 2 kg, 20x25x20 cm (0.01 m³), 500 units in stock."""
        n = self._next()
        values = {
            "sku": f"SKU-{n:03d}",
            "name": f"Product {n}",
            "weight": 2.0,
            "width": 20.0,
            "length": 25.0,
            "height": 20.0,
            "stock_quantity": 500.0,
            "is_active": True,
        }
        values.update(kwargs)
        return await self._save(Product(**values))

    async def packaging_type(self, product: Product, **kwargs) -> PackagingType:
        values = {
            "product_id": product.id,
            "name": "Caixa",
            "base_unit_quantity": 12.0,
            "is_base_unit": False,
            "is_active": True,
        }
        values.update(kwargs)
        return await self._save(PackagingType(**values))


@pytest.fixture
def seed(db_session) -> Seeder:
    return Seeder(db_session)


@pytest_asyncio.fixture
async def pallet(seed) -> Pallet:
    return await seed.pallet()


@pytest_asyncio.fixture
async def position(seed) -> Position:
    return await seed.position()


@pytest_asyncio.fixture
async def product(seed) -> Product:
    return await seed.product()


# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis_client():
    """Redis client for tests; skips when no server is reachable."""
    import redis.asyncio as redis

    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (redis.RedisError, OSError):
        await client.aclose()
        pytest.skip("Redis not available")

    yield client

    # Cleanup: flush test database
    await client.flushdb()
    await client.aclose()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: API tests")
    config.addinivalue_line("markers", "cache: Cache tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
