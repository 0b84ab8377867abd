"""S3-compatible object archive for retention backups.

Works against AWS S3 or Cloudflare R2 (set ``endpoint_url``). Keys are
path-like strings under a single bucket.

Security contract:
- Credentials come from the standard boto3 chain, never from settings
- Any client/transport error -> DependencyFailure (callers must not delete
  hot rows when a put failed)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from storefront.config import Settings
from storefront.errors import DependencyFailure

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class ArchiveNotFound(LookupError):
    """No archive object under the requested key."""


@dataclass(frozen=True)
class ArchiveObject:
    key: str
    size: int
    last_modified: datetime


class ObjectArchive:
    """Thin put/list/get/delete wrapper over an S3 bucket."""

    def __init__(self, bucket: str, client: Any = None):
        self._bucket = bucket
        self._s3 = client or boto3.client("s3")

    @classmethod
    def from_settings(cls, settings: Settings) -> ObjectArchive:
        client = boto3.client(
            "s3",
            endpoint_url=settings.archive_endpoint_url or None,
            region_name=settings.archive_region,
        )
        return cls(settings.archive_bucket, client)

    @property
    def bucket(self) -> str:
        return self._bucket

    def put(self, key: str, body: bytes, metadata: dict[str, str] | None = None) -> None:
        try:
            self._s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=JSON_CONTENT_TYPE,
                Metadata=metadata or {},
            )
        except (BotoCoreError, ClientError) as e:
            raise DependencyFailure(f"Archive write failed for {key}: {e}") from e
        logger.info("Archived s3://%s/%s (%d bytes)", self._bucket, key, len(body))

    def list(self, prefix: str) -> list[ArchiveObject]:
        objects: list[ArchiveObject] = []
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(ArchiveObject(
                        key=obj["Key"],
                        size=obj["Size"],
                        last_modified=obj["LastModified"],
                    ))
        except (BotoCoreError, ClientError) as e:
            raise DependencyFailure(f"Archive list failed for {prefix}: {e}") from e
        return sorted(objects, key=lambda o: o.key)

    def get(self, key: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise ArchiveNotFound(key) from e
            raise DependencyFailure(f"Archive read failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise DependencyFailure(f"Archive read failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise DependencyFailure(f"Archive delete failed for {key}: {e}") from e
        logger.info("Deleted archive s3://%s/%s", self._bucket, key)
