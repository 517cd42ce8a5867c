"""
Demo data seeding for watermark-sync.

Creates the tables, loads the three sample orders and seeds the `orders`
watermark below their timestamps. `--mutate` applies the second round of
changes (a new order and an update to order 2) so the next sync exercises
both the insert and the update path.
"""

from __future__ import annotations

import sys
from datetime import datetime
from decimal import Decimal
from typing import List

import psycopg
import typer
from psycopg import sql

from watermark_sync.config import get_settings
from watermark_sync.domain.models import SourceRecord
from watermark_sync.infrastructure.db_factory import build_dsn
from watermark_sync.stores.postgres import PostgresWatermarkStore, create_schema

app = typer.Typer(help="Seed demo orders and the initial watermark into Postgres.")

DEMO_SOURCE = "orders"
DEMO_FLOOR = datetime(2000, 1, 1)


def _order(order_id: int, customer_id: int, amount: str, last_modified: datetime) -> SourceRecord:
    return SourceRecord(
        id=order_id, customer_id=customer_id, amount=Decimal(amount), last_modified=last_modified
    )


def initial_orders() -> List[SourceRecord]:
    return [
        _order(1, 101, "500.00", datetime(2024, 1, 1)),
        _order(2, 102, "300.00", datetime(2024, 1, 5)),
        _order(3, 103, "250.00", datetime(2024, 1, 10)),
    ]


def second_round_orders() -> List[SourceRecord]:
    """A new order 4 and a re-priced order 2, both dated after the first load."""
    return [
        _order(4, 104, "400.00", datetime(2024, 2, 1)),
        _order(2, 102, "550.00", datetime(2024, 2, 2)),
    ]


def _write_orders(conn: psycopg.Connection, table: str, orders: List[SourceRecord]) -> int:
    query = sql.SQL(
        "INSERT INTO {} (order_id, customer_id, order_amount, last_modified_date) "
        "VALUES (%s, %s, %s, %s) "
        "ON CONFLICT (order_id) DO UPDATE SET "
        "customer_id = EXCLUDED.customer_id, "
        "order_amount = EXCLUDED.order_amount, "
        "last_modified_date = EXCLUDED.last_modified_date"
    ).format(sql.Identifier(table))
    with conn.transaction():
        with conn.cursor() as cur:
            cur.executemany(
                query,
                [(o.id, o.customer_id, o.amount, o.last_modified) for o in orders],
            )
    return len(orders)


@app.command()
def main(
    mutate: bool = typer.Option(
        False,
        "--mutate",
        help="Apply the second-round changes instead of the initial load.",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
) -> None:
    """
    Seed demo orders (and the watermark) into Postgres.
    """
    settings = get_settings()
    with psycopg.connect(dsn or build_dsn(), autocommit=True) as conn:
        create_schema(conn, settings)
        if mutate:
            written = _write_orders(conn, settings.source_table, second_round_orders())
            typer.echo(f"Applied {written} second-round change(s) to {settings.source_table}.")
            return

        written = _write_orders(conn, settings.source_table, initial_orders())
        created = PostgresWatermarkStore(conn, table=settings.watermark_table).seed(
            DEMO_SOURCE, DEMO_FLOOR
        )
        typer.echo(f"Loaded {written} order(s) into {settings.source_table}.")
        if created:
            typer.echo(f"Seeded watermark '{DEMO_SOURCE}' at {DEMO_FLOOR.isoformat()}.")
        else:
            typer.echo(f"Watermark '{DEMO_SOURCE}' already present; left unchanged.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
