"""
Pytest configuration for watermark-sync.

Provides fixtures for:
- In-memory stores seeded with the demo orders (unit tests)
- Database connection management (integration tests)
- Schema creation and table cleanup between integration tests
"""

from __future__ import annotations

import os
from datetime import datetime
from decimal import Decimal
from typing import Generator

import psycopg
import pytest
from psycopg import sql

from watermark_sync.config import Settings
from watermark_sync.domain.models import SourceRecord
from watermark_sync.stores.abstract import SyncStores
from watermark_sync.stores.memory import (
    InMemoryDestination,
    InMemorySource,
    InMemoryWatermarkStore,
    in_memory_stores,
)
from watermark_sync.stores.postgres import create_schema

SEED_MARKER = datetime(2000, 1, 1)


def _make_order(
    order_id: int, amount: str, last_modified: datetime, customer_id: int | None = None
) -> SourceRecord:
    return SourceRecord(
        id=order_id,
        customer_id=customer_id if customer_id is not None else 100 + order_id,
        amount=Decimal(amount),
        last_modified=last_modified,
    )


@pytest.fixture
def make_order():
    """Factory for source rows; customer id defaults to 100 + order id."""
    return _make_order


@pytest.fixture
def demo_orders() -> list[SourceRecord]:
    return [
        _make_order(1, "500.00", datetime(2024, 1, 1)),
        _make_order(2, "300.00", datetime(2024, 1, 5)),
        _make_order(3, "250.00", datetime(2024, 1, 10)),
    ]


@pytest.fixture
def source(demo_orders: list[SourceRecord]) -> InMemorySource:
    return InMemorySource(demo_orders)


@pytest.fixture
def destination() -> InMemoryDestination:
    return InMemoryDestination()


@pytest.fixture
def watermarks() -> InMemoryWatermarkStore:
    return InMemoryWatermarkStore({"orders": SEED_MARKER})


@pytest.fixture
def stores(
    source: InMemorySource,
    destination: InMemoryDestination,
    watermarks: InMemoryWatermarkStore,
) -> SyncStores:
    return in_memory_stores(source=source, destination=destination, watermarks=watermarks)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "watermark_sync"),
        source_table="it_orders",
        destination_table="it_dwh_orders",
        watermark_table="it_etl_watermark",
        batch_size=2,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide an autocommit connection for one integration test.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def clean_tables(db_connection: psycopg.Connection, test_settings: Settings) -> Generator[None, None, None]:
    """
    Create the test tables and empty them before and after each test.
    """
    create_schema(db_connection, test_settings)

    def _truncate() -> None:
        with db_connection.cursor() as cur:
            for table in (
                test_settings.source_table,
                test_settings.destination_table,
                test_settings.watermark_table,
            ):
                cur.execute(sql.SQL("TRUNCATE TABLE {}").format(sql.Identifier(table)))

    _truncate()
    yield
    _truncate()
