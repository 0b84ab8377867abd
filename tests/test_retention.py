"""Tests for the retention & backup job (moto-backed S3 archive)."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import boto3
import pytest
from moto import mock_aws
from psycopg import sql

from storefront.errors import DependencyFailure
from storefront.retention.archive import ArchiveNotFound, ObjectArchive
from storefront.retention.jobs import (
    ARCHIVE_FORMAT_VERSION,
    RETENTION_TABLES,
    RetentionJob,
    retention_job,
    start_scheduler,
)

BUCKET = "storefront-archive"


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3(aws_credentials):
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def archive(s3):
    return ObjectArchive(BUCKET, s3)


class FakeHotStore:
    """In-memory stand-in for the age-based fetch/delete against Postgres."""

    def __init__(self, rows: dict[str, list[dict]]):
        self.rows = rows
        self.deleted: list[str] = []

    def fetch(self, table, cutoff):
        column = RETENTION_TABLES[table]
        return [r for r in self.rows.get(table, []) if r[column] < cutoff]

    def delete(self, table, cutoff):
        column = RETENTION_TABLES[table]
        before = self.rows.get(table, [])
        kept = [r for r in before if r[column] >= cutoff]
        self.rows[table] = kept
        self.deleted.append(table)
        return len(before) - len(kept)


def _job(archive, hot: FakeHotStore, **kwargs) -> RetentionJob:
    job = RetentionJob(MagicMock(), archive, **kwargs)
    job.fetch_older_than = hot.fetch
    job.delete_older_than = hot.delete
    return job


def _ts(days_ago: int) -> int:
    return int((datetime.now(timezone.utc) - timedelta(days=days_ago)).timestamp())


class TestArchiveThenDelete:
    def test_old_rows_archived_and_removed(self, archive, s3):
        hot = FakeHotStore({
            "ecommerce_events": [
                {"id": 1, "event_name": "purchase", "timestamp": _ts(120)},
                {"id": 2, "event_name": "purchase", "timestamp": _ts(5)},
            ],
            "webhook_events": [{"id": "order-1", "created_at": _ts(200)}],
        })
        report = _job(archive, hot).run()

        assert report.archived == {"webhook_events": 1, "ecommerce_events": 1}
        assert report.deleted == {"webhook_events": 1, "ecommerce_events": 1}
        assert [r["id"] for r in hot.rows["ecommerce_events"]] == [2]
        assert hot.rows["webhook_events"] == []

        key = next(k for k in report.keys if "/ecommerce_events/" in k)
        assert re.fullmatch(r"archive/ecommerce_events/\d{4}-\d{2}-\d{2}-\d+\.json", key)
        doc = json.loads(s3.get_object(Bucket=BUCKET, Key=key)["Body"].read())
        assert doc["version"] == ARCHIVE_FORMAT_VERSION
        assert doc["table"] == "ecommerce_events"
        assert doc["count"] == 1
        assert doc["rows"][0]["id"] == 1

    def test_empty_tables_write_nothing(self, archive, s3):
        report = _job(archive, FakeHotStore({})).run()
        assert report.keys == []
        assert s3.list_objects_v2(Bucket=BUCKET).get("KeyCount", 0) == 0

    def test_rerun_is_idempotent(self, archive):
        hot = FakeHotStore({"analytics_pageviews": [{"id": 1, "path": "/", "timestamp": _ts(100)}]})
        job = _job(archive, hot)
        first = job.run()
        second = job.run()
        assert first.archived == {"analytics_pageviews": 1}
        assert second.archived == {}
        assert second.keys == []

    def test_cutoff_honors_retention_days(self, archive):
        hot = FakeHotStore({"analytics_events": [{"id": 1, "event_name": "x", "timestamp": _ts(40)}]})
        assert _job(archive, hot).run().archived == {}
        assert _job(archive, hot, retention_days=30).run().archived == {"analytics_events": 1}

    def test_failed_put_leaves_rows_in_place(self):
        broken = MagicMock()
        broken.put.side_effect = DependencyFailure("Archive write failed")
        broken.list.return_value = []
        hot = FakeHotStore({"ecommerce_events": [{"id": 1, "timestamp": _ts(120)}]})

        with pytest.raises(DependencyFailure):
            _job(broken, hot).run()
        assert hot.deleted == []
        assert len(hot.rows["ecommerce_events"]) == 1

    def test_scheduled_wrapper_logs_instead_of_raising(self, caplog):
        job = MagicMock()
        job.run.side_effect = DependencyFailure("Archive write failed")
        with caplog.at_level(logging.WARNING):
            retention_job(job)
        assert "Retention job failed" in caplog.text


class TestPrune:
    def test_expired_archives_deleted(self, archive, s3):
        s3.put_object(Bucket=BUCKET, Key="archive/ecommerce_events/2025-01-05-1728000000.json", Body=b"{}")
        s3.put_object(Bucket=BUCKET, Key="archive/ecommerce_events/2026-09-27-1751000000.json", Body=b"{}")

        now = datetime(2026, 10, 16, tzinfo=timezone.utc)
        pruned = _job(archive, FakeHotStore({})).prune_archives(now)

        assert pruned == ["archive/ecommerce_events/2025-01-05-1728000000.json"]
        remaining = [o.key for o in archive.list("archive/")]
        assert remaining == ["archive/ecommerce_events/2026-09-27-1751000000.json"]

    def test_undated_key_uses_last_modified(self, archive, s3):
        s3.put_object(Bucket=BUCKET, Key="archive/manual-export.json", Body=b"{}")
        job = _job(archive, FakeHotStore({}))

        assert job.prune_archives(datetime.now(timezone.utc)) == []
        far_future = datetime.now(timezone.utc) + timedelta(days=400)
        assert job.prune_archives(far_future) == ["archive/manual-export.json"]

    def test_other_prefixes_untouched(self, archive, s3):
        s3.put_object(Bucket=BUCKET, Key="uploads/2020-01-01-1.json", Body=b"{}")
        _job(archive, FakeHotStore({})).prune_archives(datetime(2026, 10, 16, tzinfo=timezone.utc))
        assert [o.key for o in archive.list("uploads/")] == ["uploads/2020-01-01-1.json"]


class TestReadBack:
    def test_list_and_restore(self, archive):
        hot = FakeHotStore({"webhook_events": [{"id": "gift-1", "created_at": _ts(100)}]})
        job = _job(archive, hot)
        report = job.run()

        listed = job.list_archives("webhook_events")
        assert [a["key"] for a in listed] == report.keys
        assert listed[0]["size"] > 0

        doc = job.restore_archive(report.keys[0])
        assert doc["table"] == "webhook_events"
        assert [r["id"] for r in doc["rows"]] == ["gift-1"]

    def test_list_filters_by_table(self, archive):
        hot = FakeHotStore({
            "webhook_events": [{"id": "a", "created_at": _ts(100)}],
            "analytics_events": [{"id": 1, "timestamp": _ts(100)}],
        })
        job = _job(archive, hot)
        job.run()
        assert len(job.list_archives()) == 2
        assert all("/analytics_events/" in a["key"] for a in job.list_archives("analytics_events"))

    def test_unknown_key_raises_not_found(self, archive):
        job = _job(archive, FakeHotStore({}))
        with pytest.raises(ArchiveNotFound):
            job.restore_archive("archive/webhook_events/1999-01-01-0.json")


class TestHotStoreQueries:
    def test_fetch_uses_mapped_column(self):
        db = MagicMock()
        conn = db.connection.return_value.__enter__.return_value
        conn.execute.return_value.fetchall.return_value = [{"id": 1}]

        rows = RetentionJob(db, MagicMock()).fetch_older_than("webhook_events", 1700000000)

        assert rows == [{"id": 1}]
        query, params = conn.execute.call_args.args
        assert isinstance(query, sql.Composed)
        assert params == (1700000000,)

    def test_delete_returns_rowcount(self):
        db = MagicMock()
        conn = db.connection.return_value.__enter__.return_value
        conn.execute.return_value.rowcount = 3
        assert RetentionJob(db, MagicMock()).delete_older_than("analytics_pageviews", 1700000000) == 3

    def test_unknown_table_rejected(self):
        with pytest.raises(KeyError):
            RetentionJob(MagicMock(), MagicMock()).fetch_older_than("users; DROP TABLE x", 0)


class TestScheduler:
    @patch("storefront.retention.jobs.BackgroundScheduler")
    def test_weekly_single_instance(self, mock_scheduler_cls):
        scheduler = mock_scheduler_cls.return_value
        start_scheduler(MagicMock())

        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        scheduler.start.assert_called_once()
