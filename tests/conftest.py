import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure project root is on sys.path so `import app` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test database URL before any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from app.db import base  # noqa: E402
from app.db.models import Transaction  # noqa: E402
from app.ledger.metrics import ImportMetrics  # noqa: E402
from app.ledger.normalizer import normalize_description  # noqa: E402
from app.ledger.rates import StaticRateResolver  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine(monkeypatch):
    """
    Fresh in-memory database per test.

    StaticPool keeps the single connection alive so every session sees the
    same in-memory database. app.db.base is patched so UnitOfWork() without
    an explicit session uses it too.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(base.Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    monkeypatch.setattr(base, "engine", engine)
    monkeypatch.setattr(base, "AsyncSessionLocal", session_factory)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(test_engine):
    """Session factory bound to the per-test database."""
    yield base.AsyncSessionLocal


@pytest_asyncio.fixture
async def db_session(test_db) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session for a test."""
    async with test_db() as session:
        yield session
        await session.rollback()


@pytest.fixture
def rates() -> StaticRateResolver:
    return StaticRateResolver()


@pytest.fixture
def import_metrics() -> ImportMetrics:
    return ImportMetrics()


@pytest.fixture
def make_transaction(test_db):
    """Insert a committed transaction directly, bypassing the service."""

    async def _make(
        description: str = "Coffee",
        on: date = date(2024, 1, 1),
        amount: str = "5",
        currency: str = "USD",
        is_deleted: bool = False,
        rate: str = "85.772",
    ) -> Transaction:
        async with test_db() as session:
            transaction = Transaction(
                date=on,
                description=description,
                normalized_description=normalize_description(description),
                original_amount=Decimal(amount),
                currency=currency,
                amount_in_reference_currency=Decimal(amount) * Decimal(rate),
                is_deleted=is_deleted,
            )
            session.add(transaction)
            await session.commit()
            return transaction

    return _make


@pytest_asyncio.fixture
async def client(test_db, rates, import_metrics) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app with the test database and static rates."""
    from app.db.base import get_db
    from app.ledger.metrics import get_import_metrics
    from app.ledger.rates import get_rate_resolver
    from app.main import app

    async def get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with test_db() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_rate_resolver] = lambda: rates
    app.dependency_overrides[get_import_metrics] = lambda: import_metrics

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
