"""Postgres access: connection helper and schema bootstrap.

One short-lived connection per operation, autocommit, dict rows. Every
statement the stores run is a single atomic statement, so autocommit keeps
request-scoped work free of transaction state.

Connection failures surface as ``DependencyFailure`` so callers fail
closed instead of proceeding without the store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from psycopg.rows import dict_row

from storefront.errors import DependencyFailure

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS webhook_events (
        id            TEXT PRIMARY KEY,
        event_type    TEXT NOT NULL,
        payload       TEXT NOT NULL,
        signature     TEXT NOT NULL,
        processed_at  BIGINT NOT NULL,
        created_at    BIGINT NOT NULL DEFAULT extract(epoch FROM now())::bigint
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_webhook_events_event_type ON webhook_events (event_type)",
    "CREATE INDEX IF NOT EXISTS idx_webhook_events_created_at ON webhook_events (created_at)",
    """
    CREATE TABLE IF NOT EXISTS ecommerce_events (
        id              BIGSERIAL PRIMARY KEY,
        event_name      TEXT NOT NULL,
        path            TEXT,
        locale          TEXT,
        currency        TEXT,
        value           DOUBLE PRECISION,
        transaction_id  TEXT,
        tax             DOUBLE PRECISION,
        shipping        DOUBLE PRECISION,
        coupon          TEXT,
        ecommerce_data  JSONB NOT NULL,
        user_agent      TEXT,
        country         TEXT,
        timestamp       BIGINT NOT NULL DEFAULT extract(epoch FROM now())::bigint
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ecommerce_events_event_name ON ecommerce_events (event_name)",
    "CREATE INDEX IF NOT EXISTS idx_ecommerce_events_timestamp ON ecommerce_events (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_ecommerce_events_transaction_id ON ecommerce_events (transaction_id)",
    """
    CREATE TABLE IF NOT EXISTS analytics_pageviews (
        id          BIGSERIAL PRIMARY KEY,
        path        TEXT NOT NULL,
        locale      TEXT,
        referrer    TEXT,
        user_agent  TEXT,
        country     TEXT,
        timestamp   BIGINT NOT NULL DEFAULT extract(epoch FROM now())::bigint
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_analytics_pageviews_path ON analytics_pageviews (path)",
    "CREATE INDEX IF NOT EXISTS idx_analytics_pageviews_timestamp ON analytics_pageviews (timestamp)",
    """
    CREATE TABLE IF NOT EXISTS analytics_events (
        id              BIGSERIAL PRIMARY KEY,
        event_name      TEXT NOT NULL,
        event_data      TEXT,
        path            TEXT,
        locale          TEXT,
        currency        TEXT,
        value           DOUBLE PRECISION,
        transaction_id  TEXT,
        timestamp       BIGINT NOT NULL DEFAULT extract(epoch FROM now())::bigint
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_analytics_events_event_name ON analytics_events (event_name)",
    "CREATE INDEX IF NOT EXISTS idx_analytics_events_timestamp ON analytics_events (timestamp)",
)


class Database:
    """Connection factory bound to a single DSN."""

    def __init__(self, dsn: str):
        self._dsn = dsn

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        try:
            conn = psycopg.connect(self._dsn, autocommit=True, row_factory=dict_row)
        except psycopg.OperationalError as exc:
            raise DependencyFailure("Database unavailable") from exc
        try:
            with conn:
                yield conn
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise DependencyFailure("Database unavailable") from exc

    def init_schema(self) -> None:
        """Create tables and indexes if they don't exist.  Idempotent."""
        with self.connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.info("Storefront tables initialized")

    def ping(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except DependencyFailure:
            logger.warning("Database health check failed", exc_info=True)
            return False


def cutoff_timestamp(now: float, days: int) -> int:
    """Unix-seconds cutoff *days* before *now*."""
    return int(now) - days * SECONDS_PER_DAY
