"""Retention & backup job — archive aged rows, delete them, prune archives.

For each hot table, rows older than ``retention_days`` are written as one
JSON document to ``{prefix}/{table}/{YYYY-MM-DD}-{cutoff}.json`` and then
deleted. Archives older than ``archive_retention_days`` are pruned.

Security contract:
- Rows are deleted only after their archive write succeeded
- Table and column names come from a fixed map, never from input
- Re-runs are idempotent: archived rows are gone, so nothing is re-archived
- One instance at a time (scheduler: max_instances=1, coalesce)
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from psycopg import sql

from storefront.config import Settings
from storefront.db import Database, cutoff_timestamp
from storefront.retention.archive import ObjectArchive

logger = logging.getLogger(__name__)

ARCHIVE_FORMAT_VERSION = "1.0.0"

# Hot table -> age column (Unix seconds)
RETENTION_TABLES: dict[str, str] = {
    "webhook_events": "created_at",
    "ecommerce_events": "timestamp",
    "analytics_pageviews": "timestamp",
    "analytics_events": "timestamp",
}

_KEY_DATE = re.compile(r"/(\d{4}-\d{2}-\d{2})-\d+\.json$")


@dataclass
class RetentionReport:
    cutoff: int
    archived: dict[str, int] = field(default_factory=dict)
    deleted: dict[str, int] = field(default_factory=dict)
    keys: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)


class RetentionJob:
    """Archive-then-delete sweep over the hot tables."""

    def __init__(
        self,
        db: Database,
        archive: ObjectArchive,
        retention_days: int = 90,
        archive_retention_days: int = 365,
        prefix: str = "archive",
    ):
        self._db = db
        self._archive = archive
        self._retention_days = retention_days
        self._archive_retention_days = archive_retention_days
        self._prefix = prefix.strip("/")

    # ── Hot-store access ──────────────────────────────────────────────────

    def fetch_older_than(self, table: str, cutoff: int) -> list[dict[str, Any]]:
        column = RETENTION_TABLES[table]
        query = sql.SQL("SELECT * FROM {} WHERE {} < %s ORDER BY {}").format(
            sql.Identifier(table), sql.Identifier(column), sql.Identifier(column)
        )
        with self._db.connection() as conn:
            return conn.execute(query, (cutoff,)).fetchall()

    def delete_older_than(self, table: str, cutoff: int) -> int:
        column = RETENTION_TABLES[table]
        query = sql.SQL("DELETE FROM {} WHERE {} < %s").format(
            sql.Identifier(table), sql.Identifier(column)
        )
        with self._db.connection() as conn:
            return conn.execute(query, (cutoff,)).rowcount

    # ── Sweep ─────────────────────────────────────────────────────────────

    def archive_key(self, table: str, now: datetime, cutoff: int) -> str:
        return f"{self._prefix}/{table}/{now:%Y-%m-%d}-{cutoff}.json"

    def run(self) -> RetentionReport:
        """Archive and delete aged rows, then prune expired archives."""
        now = datetime.now(timezone.utc)
        cutoff = cutoff_timestamp(now.timestamp(), self._retention_days)
        report = RetentionReport(cutoff=cutoff)

        for table in RETENTION_TABLES:
            rows = self.fetch_older_than(table, cutoff)
            if not rows:
                logger.debug("Retention: nothing older than %d in %s", cutoff, table)
                continue

            key = self.archive_key(table, now, cutoff)
            document = {
                "version": ARCHIVE_FORMAT_VERSION,
                "table": table,
                "cutoff": cutoff,
                "createdAt": now.isoformat(),
                "count": len(rows),
                "rows": rows,
            }
            body = json.dumps(document, default=str).encode("utf-8")
            # Raises on failure; rows stay in place for the next run
            self._archive.put(key, body, {"table": table, "count": str(len(rows))})

            deleted = self.delete_older_than(table, cutoff)
            report.archived[table] = len(rows)
            report.deleted[table] = deleted
            report.keys.append(key)
            logger.info("Retention: archived %d and deleted %d rows from %s", len(rows), deleted, table)

        report.pruned = self.prune_archives(now)
        return report

    def prune_archives(self, now: datetime | None = None) -> list[str]:
        """Delete archives older than the archive retention window."""
        now = now or datetime.now(timezone.utc)
        threshold = now - timedelta(days=self._archive_retention_days)
        pruned = []
        for obj in self._archive.list(f"{self._prefix}/"):
            if _archive_date(obj.key, obj.last_modified) < threshold:
                self._archive.delete(obj.key)
                pruned.append(obj.key)
        if pruned:
            logger.info("Retention: pruned %d archives older than %s", len(pruned), threshold.date())
        return pruned

    # ── Read-back ─────────────────────────────────────────────────────────

    def list_archives(self, table: str | None = None) -> list[dict[str, Any]]:
        prefix = f"{self._prefix}/{table}/" if table else f"{self._prefix}/"
        return [
            {"key": o.key, "size": o.size, "lastModified": o.last_modified.isoformat()}
            for o in self._archive.list(prefix)
        ]

    def restore_archive(self, key: str) -> dict[str, Any]:
        """Load an archive document.  Raises ArchiveNotFound for unknown keys."""
        return json.loads(self._archive.get(key))


def _archive_date(key: str, last_modified: datetime) -> datetime:
    """Archive date from the key, falling back to the object's mtime."""
    match = _KEY_DATE.search(key)
    if match:
        return datetime.strptime(match.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)
    if last_modified.tzinfo is None:
        return last_modified.replace(tzinfo=timezone.utc)
    return last_modified


# ── Scheduling ────────────────────────────────────────────────────────────


def build_retention_job(db: Database, settings: Settings) -> RetentionJob:
    return RetentionJob(
        db,
        ObjectArchive.from_settings(settings),
        retention_days=settings.retention_days,
        archive_retention_days=settings.archive_retention_days,
        prefix=settings.archive_prefix,
    )


def retention_job(job: RetentionJob) -> None:
    """Weekly retention sweep. Called by APScheduler."""
    start = time.time()
    try:
        report = job.run()
        logger.info(
            "Retention complete in %.1fs: archived=%s deleted=%s pruned=%d",
            time.time() - start,
            report.archived,
            report.deleted,
            len(report.pruned),
        )
    except Exception:
        logger.warning("Retention job failed", exc_info=True)


def start_scheduler(job: RetentionJob) -> BackgroundScheduler:
    """Start the background scheduler with the weekly retention sweep."""
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        retention_job,
        CronTrigger(day_of_week="sun", hour=3, minute=0, timezone="UTC"),
        args=[job],
        id="retention",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: retention sweep weekly (Sun 03:00 UTC)")
    return scheduler
