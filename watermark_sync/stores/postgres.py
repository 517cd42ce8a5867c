"""
PostgreSQL-backed stores.

All three stores share one psycopg connection so that the orchestrator can
wrap apply + advance in a single database transaction. The connection is put
in autocommit mode: standalone reads commit immediately and `transaction()`
opens a real BEGIN/COMMIT block rather than a savepoint.

Table names come from settings and are composed with `psycopg.sql.Identifier`;
column names follow `create_schema`.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Iterator, List, Optional, Sequence, Tuple

import psycopg
from psycopg import sql

from watermark_sync.config import Settings, get_settings
from watermark_sync.domain.errors import (
    ConcurrentRunError,
    ConstraintViolation,
    TransientStoreError,
)
from watermark_sync.domain.models import (
    DestinationRecord,
    SourceRecord,
    WatermarkEntry,
    as_naive_utc,
)
from watermark_sync.infrastructure.db_factory import apply_statement_timeout
from watermark_sync.stores.abstract import AbstractWatermarkStore, SyncStores
from watermark_sync.utils.logging import get_logger

log = get_logger(__name__)

_ORDER_COLUMNS = ("order_id", "customer_id", "order_amount", "last_modified_date")

_ORDERS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    order_id INT PRIMARY KEY,
    customer_id INT,
    order_amount NUMERIC(10, 2),
    last_modified_date TIMESTAMP NOT NULL
)
"""

_WATERMARK_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    table_name VARCHAR(100) PRIMARY KEY,
    last_loaded_value TIMESTAMP NOT NULL
)
"""


@contextmanager
def translate_errors(source_name: Optional[str] = None) -> Iterator[None]:
    """
    Map psycopg failures onto the sync error taxonomy.
    """
    try:
        yield
    except psycopg.IntegrityError as exc:
        raise ConstraintViolation(str(exc), source_name=source_name) from exc
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        raise TransientStoreError(str(exc), source_name=source_name) from exc


def _batched_fetch(cursor: psycopg.Cursor, batch_size: int) -> Iterator[list]:
    """
    Yield batches from a cursor using fetchmany.
    """
    while True:
        batch = cursor.fetchmany(batch_size)
        if not batch:
            break
        yield batch


def _to_record(row: Sequence, model: type = SourceRecord) -> SourceRecord:
    order_id, customer_id, amount, last_modified = row
    return model(id=order_id, customer_id=customer_id, amount=amount, last_modified=last_modified)


class PostgresWatermarkStore(AbstractWatermarkStore):
    """
    One row per tracked source in the watermark table.
    """

    def __init__(self, conn: psycopg.Connection, table: str = "etl_watermark") -> None:
        self._conn = conn
        self._table = sql.Identifier(table)

    def get(self, source_name: str) -> Optional[datetime]:
        query = sql.SQL("SELECT last_loaded_value FROM {} WHERE table_name = %s").format(
            self._table
        )
        with translate_errors(source_name):
            with self._conn.cursor() as cur:
                cur.execute(query, (source_name,))
                row = cur.fetchone()
        return row[0] if row else None

    def set(self, source_name: str, marker_value: datetime) -> None:
        query = sql.SQL(
            "INSERT INTO {} (table_name, last_loaded_value) VALUES (%s, %s) "
            "ON CONFLICT (table_name) DO UPDATE SET last_loaded_value = EXCLUDED.last_loaded_value"
        ).format(self._table)
        with translate_errors(source_name):
            with self._conn.cursor() as cur:
                cur.execute(query, (source_name, as_naive_utc(marker_value)))

    def seed(self, source_name: str, marker_value: datetime) -> bool:
        """
        Write the initial marker unless one already exists.

        Returns True when a new entry was created.
        """
        query = sql.SQL(
            "INSERT INTO {} (table_name, last_loaded_value) VALUES (%s, %s) "
            "ON CONFLICT (table_name) DO NOTHING"
        ).format(self._table)
        with translate_errors(source_name):
            with self._conn.cursor() as cur:
                cur.execute(query, (source_name, as_naive_utc(marker_value)))
                return cur.rowcount == 1

    def entries(self) -> List[WatermarkEntry]:
        query = sql.SQL(
            "SELECT table_name, last_loaded_value FROM {} ORDER BY table_name"
        ).format(self._table)
        with translate_errors():
            with self._conn.cursor() as cur:
                cur.execute(query)
                rows = cur.fetchall()
        return [WatermarkEntry(source_name=name, marker_value=value) for name, value in rows]


class PostgresSource:
    """
    Source table reader using a server-side cursor with fetchmany batching.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        table: str = "orders",
        batch_size: int = 1_000,
        statement_timeout_ms: int = 0,
    ) -> None:
        self._conn = conn
        self._table = sql.Identifier(table)
        self.batch_size = batch_size
        self.statement_timeout_ms = statement_timeout_ms

    def changed_since(self, marker_value: datetime) -> List[SourceRecord]:
        query = sql.SQL("SELECT {} FROM {} WHERE last_modified_date > %s ORDER BY order_id").format(
            sql.SQL(", ").join(map(sql.Identifier, _ORDER_COLUMNS)), self._table
        )
        records: List[SourceRecord] = []
        with translate_errors():
            # Server-side cursors need a transaction block.
            with self._conn.transaction():
                if self.statement_timeout_ms:
                    with self._conn.cursor() as setup:
                        apply_statement_timeout(setup, self.statement_timeout_ms)
                with self._conn.cursor(name="watermark_sync_changes") as cur:
                    cur.execute(query, (as_naive_utc(marker_value),))
                    for batch in _batched_fetch(cur, self.batch_size):
                        records.extend(_to_record(row) for row in batch)
        return records


class PostgresDestination:
    """
    Destination table written with INSERT ... ON CONFLICT DO UPDATE.

    `xmax = 0` on the returned row distinguishes a fresh insert from an update.
    """

    def __init__(self, conn: psycopg.Connection, table: str = "dwh_orders") -> None:
        self._conn = conn
        self._table = sql.Identifier(table)

    def upsert(self, records: Sequence[DestinationRecord]) -> Tuple[int, int]:
        if not records:
            return 0, 0
        query = sql.SQL(
            "INSERT INTO {} (order_id, customer_id, order_amount, last_modified_date) "
            "VALUES (%s, %s, %s, %s) "
            "ON CONFLICT (order_id) DO UPDATE SET "
            "customer_id = EXCLUDED.customer_id, "
            "order_amount = EXCLUDED.order_amount, "
            "last_modified_date = EXCLUDED.last_modified_date "
            "RETURNING (xmax = 0) AS inserted"
        ).format(self._table)
        inserted = updated = 0
        with translate_errors():
            with self._conn.transaction():
                with self._conn.cursor() as cur:
                    for record in records:
                        cur.execute(
                            query,
                            (record.id, record.customer_id, record.amount, record.last_modified),
                        )
                        (was_inserted,) = cur.fetchone()
                        if was_inserted:
                            inserted += 1
                        else:
                            updated += 1
        return inserted, updated

    def get(self, record_id: int) -> Optional[DestinationRecord]:
        query = sql.SQL("SELECT {} FROM {} WHERE order_id = %s").format(
            sql.SQL(", ").join(map(sql.Identifier, _ORDER_COLUMNS)), self._table
        )
        with translate_errors():
            with self._conn.cursor() as cur:
                cur.execute(query, (record_id,))
                row = cur.fetchone()
        return _to_record(row, DestinationRecord) if row else None

    def count(self) -> int:
        query = sql.SQL("SELECT COUNT(*) FROM {}").format(self._table)
        with translate_errors():
            with self._conn.cursor() as cur:
                cur.execute(query)
                (total,) = cur.fetchone()
        return int(total)


@contextmanager
def advisory_lock(conn: psycopg.Connection, source_name: str) -> Generator[None, None, None]:
    """
    Session-level advisory lock keyed by source name.

    Raises ConcurrentRunError instead of waiting when another session holds it.
    An unlock failure while the body is already raising is logged, not raised;
    the session lock goes away with the dropped connection anyway.
    """
    with translate_errors(source_name):
        with conn.cursor() as cur:
            cur.execute("SELECT pg_try_advisory_lock(hashtext(%s))", (source_name,))
            (acquired,) = cur.fetchone()
    if not acquired:
        raise ConcurrentRunError(
            f"another sync run holds the lock for '{source_name}'", source_name=source_name
        )
    try:
        yield
    except BaseException:
        try:
            _advisory_unlock(conn, source_name)
        except TransientStoreError as unlock_exc:
            log.warning(
                "Advisory unlock failed while the run was already failing",
                extra={"source_name": source_name, "unlock_error": str(unlock_exc)},
            )
        raise
    _advisory_unlock(conn, source_name)


def _advisory_unlock(conn: psycopg.Connection, source_name: str) -> None:
    with translate_errors(source_name):
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (source_name,))


def create_schema(conn: psycopg.Connection, settings: Optional[Settings] = None) -> None:
    """
    Create the source, destination and watermark tables if missing.
    """
    settings = settings or get_settings()
    with translate_errors():
        with conn.transaction():
            with conn.cursor() as cur:
                for table in (settings.source_table, settings.destination_table):
                    cur.execute(sql.SQL(_ORDERS_DDL).format(table=sql.Identifier(table)))
                cur.execute(
                    sql.SQL(_WATERMARK_DDL).format(table=sql.Identifier(settings.watermark_table))
                )
    log.info(
        "Schema ready",
        extra={
            "source_table": settings.source_table,
            "destination_table": settings.destination_table,
            "watermark_table": settings.watermark_table,
        },
    )


def postgres_stores(
    conn: psycopg.Connection,
    settings: Optional[Settings] = None,
    use_run_lock: Optional[bool] = None,
) -> SyncStores:
    """
    Build the store bundle for one connection.

    Parameters
    ----------
    conn : psycopg.Connection
        Connection shared by all stores; switched to autocommit.
    settings : Settings | None
        Table names, batch size and timeouts. Defaults to `get_settings()`.
    use_run_lock : bool | None
        Guard each run with an advisory lock. Defaults to `settings.use_run_lock`.
    """
    settings = settings or get_settings()
    if not conn.autocommit:
        conn.autocommit = True
    lock_enabled = settings.use_run_lock if use_run_lock is None else use_run_lock

    @contextmanager
    def transaction() -> Generator[None, None, None]:
        # Commit failures surface on exit, so translate around the whole block.
        with translate_errors():
            with conn.transaction():
                yield

    stores = SyncStores(
        source=PostgresSource(
            conn,
            table=settings.source_table,
            batch_size=settings.batch_size,
            statement_timeout_ms=settings.db_statement_timeout_ms,
        ),
        destination=PostgresDestination(conn, table=settings.destination_table),
        watermarks=PostgresWatermarkStore(conn, table=settings.watermark_table),
        transaction=transaction,
        transactional=True,
    )
    if lock_enabled:
        stores.run_lock = lambda source_name: advisory_lock(conn, source_name)
    return stores


__all__ = [
    "PostgresDestination",
    "PostgresSource",
    "PostgresWatermarkStore",
    "advisory_lock",
    "create_schema",
    "postgres_stores",
    "translate_errors",
]
