from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import psycopg
import pytest

from watermark_sync.config import Settings
from watermark_sync.domain.errors import (
    ConcurrentRunError,
    ConstraintViolation,
    TransientStoreError,
)
from watermark_sync.domain.models import DestinationRecord
from watermark_sync.stores import postgres as postgres_module
from watermark_sync.stores.postgres import (
    PostgresDestination,
    PostgresSource,
    PostgresWatermarkStore,
    advisory_lock,
    postgres_stores,
    translate_errors,
)

MARKER = datetime(2024, 1, 10)


class _FakeCursor:
    def __init__(self, conn: _FakeConnection, name: str | None) -> None:
        self._conn = conn
        self.name = name
        self.rowcount = -1

    def execute(self, query: Any, params: tuple[Any, ...] | None = None) -> None:
        self._conn.executed.append((repr(query), params, self.name))
        if self._conn.fail_with is not None:
            raise self._conn.fail_with
        self.rowcount = self._conn.rowcount

    def fetchone(self) -> Any:
        return self._conn.rows.pop(0) if self._conn.rows else None

    def fetchall(self) -> list[Any]:
        rows, self._conn.rows = self._conn.rows, []
        return rows

    def fetchmany(self, size: int) -> list[Any]:
        batch, self._conn.rows = self._conn.rows[:size], self._conn.rows[size:]
        self._conn.fetchmany_sizes.append(len(batch))
        return batch

    def __enter__(self) -> _FakeCursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        del exc_type, exc, tb
        return False


class _FakeConnection:
    def __init__(self, rows: list[Any] | None = None, rowcount: int = 1) -> None:
        self.rows = list(rows or [])
        self.rowcount = rowcount
        self.autocommit = False
        self.fail_with: Exception | None = None
        self.executed: list[tuple[str, Any, str | None]] = []
        self.fetchmany_sizes: list[int] = []
        self.transactions = 0

    def cursor(self, name: str | None = None) -> _FakeCursor:
        return _FakeCursor(self, name)

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield


def test_watermark_get_returns_none_when_absent() -> None:
    conn = _FakeConnection(rows=[])

    assert PostgresWatermarkStore(conn, table="etl_watermark").get("orders") is None
    query, params, _ = conn.executed[0]
    assert "Identifier('etl_watermark')" in query
    assert params == ("orders",)


def test_watermark_set_is_a_single_upsert_statement() -> None:
    conn = _FakeConnection()

    PostgresWatermarkStore(conn).set("orders", MARKER)

    assert len(conn.executed) == 1
    query, params, _ = conn.executed[0]
    assert "ON CONFLICT (table_name) DO UPDATE" in query
    assert params == ("orders", MARKER)


def test_watermark_seed_reports_creation() -> None:
    assert PostgresWatermarkStore(_FakeConnection(rowcount=1)).seed("orders", MARKER) is True
    assert PostgresWatermarkStore(_FakeConnection(rowcount=0)).seed("orders", MARKER) is False


def test_source_uses_strict_predicate_and_batches() -> None:
    rows = [
        (1, 101, Decimal("500.00"), datetime(2024, 1, 1)),
        (2, 102, Decimal("300.00"), datetime(2024, 1, 5)),
        (3, 103, Decimal("250.00"), datetime(2024, 1, 10)),
    ]
    conn = _FakeConnection(rows=rows)

    records = PostgresSource(conn, table="orders", batch_size=2).changed_since(datetime(2000, 1, 1))

    assert [r.id for r in records] == [1, 2, 3]
    query, params, cursor_name = conn.executed[0]
    assert "last_modified_date > %s" in query
    assert ">=" not in query
    assert params == (datetime(2000, 1, 1),)
    assert cursor_name is not None
    assert conn.fetchmany_sizes == [2, 1, 0]
    assert conn.transactions == 1


def test_source_applies_statement_timeout() -> None:
    conn = _FakeConnection(rows=[])

    PostgresSource(conn, statement_timeout_ms=1500).changed_since(MARKER)

    assert conn.executed[0][0] == "'SET statement_timeout = 1500'"


def test_destination_counts_inserts_and_updates(demo_orders) -> None:
    conn = _FakeConnection(rows=[(True,), (False,), (True,)])
    rows = [DestinationRecord.from_source(order) for order in demo_orders]

    assert PostgresDestination(conn, table="dwh_orders").upsert(rows) == (2, 1)
    assert len(conn.executed) == 3
    assert "ON CONFLICT (order_id) DO UPDATE" in conn.executed[0][0]
    assert conn.executed[0][1] == (1, 101, Decimal("500.00"), datetime(2024, 1, 1))
    assert conn.transactions == 1


def test_destination_empty_upsert_does_not_touch_database() -> None:
    conn = _FakeConnection()

    assert PostgresDestination(conn).upsert([]) == (0, 0)
    assert conn.executed == []


def test_integrity_errors_become_constraint_violations(demo_orders) -> None:
    conn = _FakeConnection()
    conn.fail_with = psycopg.IntegrityError("duplicate key")

    with pytest.raises(ConstraintViolation, match="duplicate key"):
        PostgresDestination(conn).upsert([DestinationRecord.from_source(demo_orders[0])])


def test_operational_errors_become_transient() -> None:
    conn = _FakeConnection()
    conn.fail_with = psycopg.OperationalError("server closed the connection")

    with pytest.raises(TransientStoreError) as excinfo:
        PostgresWatermarkStore(conn).get("orders")

    assert excinfo.value.retryable is True


def test_translate_errors_passes_other_exceptions_through() -> None:
    with pytest.raises(ValueError):
        with translate_errors("orders"):
            raise ValueError("not a database error")


def test_advisory_lock_acquires_and_releases() -> None:
    conn = _FakeConnection(rows=[(True,)])

    with advisory_lock(conn, "orders"):
        pass

    statements = [query for query, _, _ in conn.executed]
    assert "pg_try_advisory_lock" in statements[0]
    assert "pg_advisory_unlock" in statements[1]


def test_advisory_lock_held_elsewhere_raises() -> None:
    conn = _FakeConnection(rows=[(False,)])

    with pytest.raises(ConcurrentRunError):
        with advisory_lock(conn, "orders"):
            pytest.fail("lock body must not run")

    assert len(conn.executed) == 1


def test_postgres_stores_switches_to_autocommit_and_wires_tables() -> None:
    conn = _FakeConnection()
    settings = Settings(
        source_table="src_orders",
        destination_table="dst_orders",
        watermark_table="marks",
        use_run_lock=False,
    )

    stores = postgres_stores(conn, settings=settings)

    assert conn.autocommit is True
    assert isinstance(stores.source, PostgresSource)
    assert isinstance(stores.destination, PostgresDestination)
    assert isinstance(stores.watermarks, PostgresWatermarkStore)
    with stores.transaction():
        pass
    assert conn.transactions == 1


def test_postgres_stores_run_lock_is_opt_in(monkeypatch) -> None:
    acquired: list[str] = []

    @contextmanager
    def fake_lock(conn, source_name):
        del conn
        acquired.append(source_name)
        yield

    monkeypatch.setattr(postgres_module, "advisory_lock", fake_lock)
    stores = postgres_stores(_FakeConnection(), settings=Settings(), use_run_lock=True)

    with stores.run_lock("orders"):
        pass

    assert acquired == ["orders"]


def test_transaction_translates_commit_failures() -> None:
    class _CommitFailingConnection(_FakeConnection):
        @contextmanager
        def transaction(self):
            yield
            raise psycopg.OperationalError("connection lost at commit")

    stores = postgres_stores(_CommitFailingConnection(), settings=Settings())

    with pytest.raises(TransientStoreError):
        with stores.transaction():
            pass


def test_unlock_failure_does_not_mask_the_run_error(caplog) -> None:
    conn = _FakeConnection(rows=[(True,)])

    with pytest.raises(TransientStoreError, match="lost during apply"):
        with advisory_lock(conn, "orders"):
            conn.fail_with = psycopg.OperationalError("server closed the connection")
            raise TransientStoreError("lost during apply", source_name="orders")

    assert "pg_advisory_unlock" in conn.executed[-1][0]
    assert "Advisory unlock failed" in caplog.text


def test_unlock_failure_after_clean_run_is_transient() -> None:
    conn = _FakeConnection(rows=[(True,)])

    with pytest.raises(TransientStoreError, match="server closed") as excinfo:
        with advisory_lock(conn, "orders"):
            conn.fail_with = psycopg.OperationalError("server closed the connection")

    assert excinfo.value.retryable is True


def test_aware_markers_are_written_as_naive_utc() -> None:
    conn = _FakeConnection()
    aware = datetime(2024, 1, 10, 2, 0, tzinfo=timezone(timedelta(hours=2)))

    PostgresWatermarkStore(conn).set("orders", aware)

    assert conn.executed[0][1] == ("orders", MARKER)
