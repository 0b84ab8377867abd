"""First-party analytics — pageviews and custom events.

Append-only rows in ``analytics_pageviews`` / ``analytics_events``; reads
are counts and top-N lists over a lookback window (default 7 days).
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storefront.db import Database, cutoff_timestamp

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7


class PageviewIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str = Field(min_length=1)
    locale: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    country: str | None = None


class AnalyticsEventIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_name: str = Field(min_length=1)
    event_data: str | None = None
    path: str | None = None
    locale: str | None = None
    currency: str | None = None
    value: float | None = None
    transaction_id: str | None = None


class AnalyticsStore:
    """Postgres-backed pageview and custom-event store."""

    def __init__(self, db: Database):
        self._db = db

    def insert_pageview(self, pageview: PageviewIn) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                """INSERT INTO analytics_pageviews
                   (path, locale, referrer, user_agent, country, timestamp)
                   VALUES (%s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    pageview.path,
                    pageview.locale,
                    pageview.referrer,
                    pageview.user_agent,
                    pageview.country,
                    int(time.time()),
                ),
            ).fetchone()
        return row["id"] if row else 0

    def insert_event(self, event: AnalyticsEventIn) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                """INSERT INTO analytics_events
                   (event_name, event_data, path, locale, currency, value,
                    transaction_id, timestamp)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    event.event_name,
                    event.event_data,
                    event.path,
                    event.locale,
                    event.currency,
                    event.value,
                    event.transaction_id,
                    int(time.time()),
                ),
            ).fetchone()
        return row["id"] if row else 0

    def pageview_count(self, path: str, days: int = DEFAULT_WINDOW_DAYS) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS count FROM analytics_pageviews
                   WHERE path = %s AND timestamp > %s""",
                (path, _cutoff(days)),
            ).fetchone()
        return int(row["count"]) if row else 0

    def top_pages(self, limit: int = 10, days: int = DEFAULT_WINDOW_DAYS) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT path, COUNT(*) AS views FROM analytics_pageviews
                   WHERE timestamp > %s
                   GROUP BY path
                   ORDER BY views DESC, path
                   LIMIT %s""",
                (_cutoff(days), limit),
            ).fetchall()
        return [{"path": r["path"], "views": int(r["views"])} for r in rows]

    def event_count(self, event_name: str, days: int = DEFAULT_WINDOW_DAYS) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS count FROM analytics_events
                   WHERE event_name = %s AND timestamp > %s""",
                (event_name, _cutoff(days)),
            ).fetchone()
        return int(row["count"]) if row else 0

    def top_events(self, limit: int = 10, days: int = DEFAULT_WINDOW_DAYS) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """SELECT event_name, COUNT(*) AS count FROM analytics_events
                   WHERE timestamp > %s
                   GROUP BY event_name
                   ORDER BY count DESC, event_name
                   LIMIT %s""",
                (_cutoff(days), limit),
            ).fetchall()
        return [{"event_name": r["event_name"], "count": int(r["count"])} for r in rows]


def _cutoff(days: int) -> int:
    return cutoff_timestamp(time.time(), days)
