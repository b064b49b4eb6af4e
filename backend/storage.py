# storage.py
"""
Object storage for leaf images (S3).

Images are written under `images/<timestamp>_<original-filename>` in a
private bucket and read back through time-limited presigned URLs.
"""

import os
import re
import logging
import time
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

log = logging.getLogger(__name__)

S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME", "farmfi-images")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

SIGNED_URL_TTL_SECONDS = 24 * 60 * 60
VIEW_URL_TTL_SECONDS = 5 * 60

_URL_PREFIX = re.compile(r'^https?://[^/]+/')
_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


class StorageError(RuntimeError):
    """Raised when the object store cannot be reached or refuses a request."""


def build_image_key(filename: Optional[str], timestamp_ms: Optional[int] = None) -> str:
    """Returns `images/<timestamp>_<filename>` with unsafe characters replaced."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    base = os.path.basename(filename or "") or "upload"
    safe_name = _UNSAFE_CHARS.sub("_", base).strip("_") or "upload"
    return f"images/{timestamp_ms}_{safe_name}"


def clean_key(key_or_url: str) -> str:
    """Accepts either a bare key or a full bucket URL and returns the key."""
    return _URL_PREFIX.sub("", key_or_url)


class S3ImageStore:
    def __init__(self, bucket: str = S3_BUCKET_NAME, client=None):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            region_name=AWS_REGION,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )

    def upload(self, data: bytes, filename: Optional[str], content_type: str) -> str:
        """Stores the bytes and returns the object key."""
        key = build_image_key(filename)
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            log.error(f"S3 upload failed for key '{key}': {e}", exc_info=True)
            raise StorageError(f"Could not store image: {e}") from e
        log.info(f"Stored image in s3://{self.bucket}/{key} ({len(data)} bytes)")
        return key

    def signed_url(self, key: str, expires_in: int = SIGNED_URL_TTL_SECONDS) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": clean_key(key)},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            log.error(f"Could not sign URL for key '{key}': {e}")
            raise StorageError(f"Could not sign image URL: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=clean_key(key))
        except (BotoCoreError, ClientError) as e:
            log.error(f"S3 delete failed for key '{key}': {e}")
            raise StorageError(f"Could not delete image: {e}") from e


@lru_cache(maxsize=1)
def get_image_store() -> S3ImageStore:
    """FastAPI dependency; one client per process."""
    return S3ImageStore()
