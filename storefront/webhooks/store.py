"""Webhook audit trail and idempotency store — Postgres ``webhook_events``.

Security contract:
- One row per upstream event id; the primary key is the only dedup guard
- insert() is race-safe: INSERT ... ON CONFLICT DO NOTHING, a lost race
  reports False exactly like a prior delivery
- Rows keep the raw body and presented signature for re-verification/replay
- Store unreachable -> DependencyFailure (fail closed, sender retries)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import psycopg

from storefront.db import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookRecord:
    """A durably recorded webhook delivery."""

    id: str
    event_type: str
    payload: str
    signature: str
    processed_at: int
    created_at: int


class WebhookEventStore:
    """Postgres-backed idempotency store for webhook deliveries."""

    def __init__(self, db: Database):
        self._db = db

    def exists(self, webhook_id: str) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM webhook_events WHERE id = %s",
                (webhook_id,),
            ).fetchone()
        return row is not None

    def insert(self, record: WebhookRecord) -> bool:
        """Insert *record*.  Returns False if the id was already present."""
        try:
            with self._db.connection() as conn:
                row = conn.execute(
                    """INSERT INTO webhook_events
                       (id, event_type, payload, signature, processed_at, created_at)
                       VALUES (%s, %s, %s, %s, %s, %s)
                       ON CONFLICT (id) DO NOTHING
                       RETURNING id""",
                    (
                        record.id,
                        record.event_type,
                        record.payload,
                        record.signature,
                        record.processed_at,
                        record.created_at,
                    ),
                ).fetchone()
        except psycopg.errors.UniqueViolation:
            row = None
        if row is None:
            logger.info("Webhook %s already recorded — insert skipped", record.id)
            return False
        return True

    def get(self, webhook_id: str) -> WebhookRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM webhook_events WHERE id = %s",
                (webhook_id,),
            ).fetchone()
        return _to_record(row) if row else None

    def list_by_type(self, event_type: str, limit: int = 10) -> list[WebhookRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT * FROM webhook_events
                   WHERE event_type = %s
                   ORDER BY created_at DESC LIMIT %s""",
                (event_type, limit),
            ).fetchall()
        return [_to_record(r) for r in rows]


def _to_record(row: dict[str, Any]) -> WebhookRecord:
    return WebhookRecord(**{k: row[k] for k in WebhookRecord.__dataclass_fields__})
