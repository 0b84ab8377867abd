"""Ecommerce event store and aggregate queries — Postgres ``ecommerce_events``.

Rows are insert-only. Every query takes a lookback window in days and
answers absence of data with 0 / [] rather than None.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from psycopg.types.json import Jsonb

from storefront.db import Database, cutoff_timestamp
from storefront.ecommerce.models import FUNNEL_STEPS, EcommerceEventName, event_row

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class RequestContext:
    """Where a client-reported event came from."""

    path: str | None = None
    locale: str | None = None
    user_agent: str | None = None
    country: str | None = None


class EcommerceEventStore:
    """Postgres-backed store for normalized ecommerce events."""

    def __init__(self, db: Database):
        self._db = db

    def insert(self, event: Any, context: RequestContext | None = None) -> int:
        """Insert a normalized event.  Returns the new row id."""
        row = event_row(event)
        ctx = context or RequestContext()
        with self._db.connection() as conn:
            result = conn.execute(
                """INSERT INTO ecommerce_events
                   (event_name, path, locale, currency, value, transaction_id,
                    tax, shipping, coupon, ecommerce_data, user_agent, country, timestamp)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    row["event_name"],
                    ctx.path,
                    ctx.locale,
                    row["currency"],
                    row["value"],
                    row["transaction_id"],
                    row["tax"],
                    row["shipping"],
                    row["coupon"],
                    Jsonb(row["ecommerce_data"]),
                    ctx.user_agent,
                    ctx.country,
                    int(time.time()),
                ),
            ).fetchone()
        return result["id"] if result else 0

    # ── Revenue ───────────────────────────────────────────────────────────

    def total_revenue(self, days: int = DEFAULT_WINDOW_DAYS) -> float:
        with self._db.connection() as conn:
            row = conn.execute(
                """SELECT COALESCE(SUM(value), 0) AS revenue
                   FROM ecommerce_events
                   WHERE event_name = %s AND timestamp > %s""",
                (EcommerceEventName.PURCHASE.value, _cutoff(days)),
            ).fetchone()
        return float(row["revenue"]) if row else 0.0

    def purchase_count(self, days: int = DEFAULT_WINDOW_DAYS) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS count
                   FROM ecommerce_events
                   WHERE event_name = %s AND timestamp > %s""",
                (EcommerceEventName.PURCHASE.value, _cutoff(days)),
            ).fetchone()
        return int(row["count"]) if row else 0

    def average_order_value(self, days: int = DEFAULT_WINDOW_DAYS) -> float:
        count = self.purchase_count(days)
        if count == 0:
            return 0.0
        return self.total_revenue(days) / count

    # ── Conversion ────────────────────────────────────────────────────────

    def conversion_funnel(self, days: int = DEFAULT_WINDOW_DAYS) -> list[dict[str, Any]]:
        """Counts per funnel step, always in funnel order, zero-filled."""
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT event_name, COUNT(*) AS count
                   FROM ecommerce_events
                   WHERE timestamp > %s AND event_name = ANY(%s)
                   GROUP BY event_name""",
                (_cutoff(days), [step.value for step in FUNNEL_STEPS]),
            ).fetchall()
        counts = {r["event_name"]: int(r["count"]) for r in rows}
        return [
            {"event_name": step.value, "count": counts.get(step.value, 0)}
            for step in FUNNEL_STEPS
        ]

    def cart_abandonment_rate(self, days: int = DEFAULT_WINDOW_DAYS) -> float:
        """1 - purchases / carts, clamped to [0, 1]; 0 when no carts exist."""
        with self._db.connection() as conn:
            row = conn.execute(
                """SELECT
                     COALESCE(SUM(CASE WHEN event_name = %s THEN 1 ELSE 0 END), 0) AS carts_created,
                     COALESCE(SUM(CASE WHEN event_name = %s THEN 1 ELSE 0 END), 0) AS purchases
                   FROM ecommerce_events
                   WHERE timestamp > %s AND event_name IN (%s, %s)""",
                (
                    EcommerceEventName.ADD_TO_CART.value,
                    EcommerceEventName.PURCHASE.value,
                    _cutoff(days),
                    EcommerceEventName.ADD_TO_CART.value,
                    EcommerceEventName.PURCHASE.value,
                ),
            ).fetchone()
        return abandonment_rate(
            int(row["carts_created"]) if row else 0,
            int(row["purchases"]) if row else 0,
        )

    # ── Products ──────────────────────────────────────────────────────────

    def top_products(self, limit: int = 10, days: int = DEFAULT_WINDOW_DAYS) -> list[dict[str, Any]]:
        """Items across all purchase rows, by summed item revenue descending."""
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT
                     item->>'item_id' AS item_id,
                     item->>'item_name' AS item_name,
                     COUNT(DISTINCT e.id) AS purchases,
                     SUM(COALESCE((item->>'quantity')::int, 1)) AS quantity,
                     SUM((item->>'price')::double precision
                         * COALESCE((item->>'quantity')::int, 1)) AS revenue
                   FROM ecommerce_events e
                   CROSS JOIN LATERAL jsonb_array_elements(e.ecommerce_data->'items') AS item
                   WHERE e.event_name = %s AND e.timestamp > %s
                   GROUP BY 1, 2
                   ORDER BY revenue DESC, item_id
                   LIMIT %s""",
                (EcommerceEventName.PURCHASE.value, _cutoff(days), limit),
            ).fetchall()
        return [
            {
                "item_id": r["item_id"],
                "item_name": r["item_name"],
                "purchases": int(r["purchases"]),
                "quantity": int(r["quantity"] or 0),
                "revenue": float(r["revenue"] or 0),
            }
            for r in rows
        ]


def abandonment_rate(carts_created: int, purchases: int) -> float:
    if carts_created <= 0:
        return 0.0
    rate = 1 - purchases / carts_created
    return max(0.0, min(1.0, rate))


def _cutoff(days: int) -> int:
    return cutoff_timestamp(time.time(), days)
