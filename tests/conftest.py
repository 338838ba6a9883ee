"""Pytest configuration for tests."""

import os

# Settings are read at import time; point them at test-friendly values first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["OTLP_ENDPOINT"] = ""
os.environ["CALLBACK_SECRET"] = "test-callback-secret"
os.environ["TOSS_SECRET_KEY"] = "test_sk"
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import storefront.models  # noqa: E402,F401
from storefront.database import Base  # noqa: E402
from storefront.models.product import Product  # noqa: E402
from storefront.services.gateway import TossPayClient  # noqa: E402
from tests.helpers import GatewayStub  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions get separate connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_product(session_factory):
    """Create a committed product and return its id."""

    async def _make(price: int = 10000, stock: int = 10, is_deleted: bool = False,
                    name: str = "Jeju sunrise tour") -> int:
        async with session_factory() as session:
            product = Product(
                name=name,
                description="Limited hot-deal course",
                price=price,
                stock=stock,
                is_deleted=is_deleted,
            )
            session.add(product)
            await session.commit()
            return product.id

    return _make


@pytest.fixture
def gateway_stub():
    return GatewayStub()


@pytest.fixture
async def gateway(gateway_stub):
    client = TossPayClient(
        base_url="https://pay.test",
        secret_key="test_sk",
        timeout=5.0,
        transport=httpx.MockTransport(gateway_stub.handle),
    )
    yield client
    await client.aclose()
