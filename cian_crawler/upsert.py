"""PostgreSQL persistence for the crawl statistic."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Iterable, Optional

import psycopg2
from psycopg2.extensions import connection as PGConnection

from .errors import ConfigError
from .statistic import FlatStatistic


def get_db_connection(dsn: Optional[str] = None) -> PGConnection:
    """Return a psycopg2 connection using ``dsn`` or the DSN from the environment."""
    dsn = dsn or os.getenv("PG_DSN")
    if not dsn:
        raise ConfigError("PG_DSN is not set")
    return psycopg2.connect(dsn)


def ensure_schema(conn: PGConnection) -> None:
    """Create the statistic table when it does not exist yet."""
    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS flat_median_price (
                date_time TIMESTAMPTZ NOT NULL,
                location TEXT NOT NULL,
                category TEXT NOT NULL,
                rooms_count INTEGER NOT NULL,
                price_per_meter NUMERIC NOT NULL,
                offers INTEGER NOT NULL DEFAULT 0
            );
            """
        )
    conn.commit()


def save_statistic(
    conn: PGConnection,
    rows: Iterable[FlatStatistic],
    timestamp: Optional[datetime] = None,
) -> int:
    """Insert one statistic snapshot in a single transaction; returns row count."""
    timestamp = timestamp or datetime.now(timezone.utc)
    params = [
        (timestamp, row.location, row.category, row.rooms_count, row.median_price, row.offers)
        for row in rows
    ]
    try:
        with conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO flat_median_price
                    (date_time, location, category, rooms_count, price_per_meter, offers)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                params,
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return len(params)
