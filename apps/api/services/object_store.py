"""
Object storage for activity blobs (raw streams JSON, rendered GPX).

Locations handed back by put() are virtual-hosted S3 URLs:
    https://<bucket>.s3.amazonaws.com/<key>
get() accepts either such a URL or a bare key in the configured bucket.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlparse

from botocore.exceptions import ClientError

from core.exceptions import StorageError

logger = logging.getLogger(__name__)


def raw_streams_key(provider_slug: str, raw_activity_id) -> str:
    return f"activity_details/{provider_slug}/raw/{raw_activity_id}.json"


def gpx_key(provider_slug: str, activity_id) -> str:
    return f"activity_details/{provider_slug}/gpx/{activity_id}.gpx"


class ObjectStore(ABC):
    @abstractmethod
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store `data` under `key` and return its location."""

    @abstractmethod
    def get(self, key_or_url: str) -> bytes:
        pass


class S3ObjectStore(ObjectStore):
    def __init__(self, bucket: str, client=None, region_name: Optional[str] = None):
        if not bucket:
            raise ValueError("AWS_S3_BUCKET_NAME is not set")
        self.bucket = bucket
        if client is None:
            import boto3
            client = boto3.client("s3", region_name=region_name)
        self.client = client

    def location(self, key: str) -> str:
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def key_for(self, key_or_url: str) -> str:
        if not key_or_url.startswith(("http://", "https://", "s3://")):
            return key_or_url.lstrip("/")

        parsed = urlparse(key_or_url)
        if parsed.scheme == "s3":
            bucket, key = parsed.netloc, parsed.path.lstrip("/")
        else:
            bucket, key = parsed.netloc.split(".s3", 1)[0], parsed.path.lstrip("/")
        if bucket != self.bucket:
            raise ValueError(f"object {key_or_url} is not in bucket {self.bucket}")
        return key

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except ClientError as e:
            logger.error(f"S3 upload failed for s3://{self.bucket}/{key}: {e}")
            raise StorageError(f"S3 upload failed: {e}") from e
        return self.location(key)

    def get(self, key_or_url: str) -> bytes:
        key = self.key_for(key_or_url)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.error(f"S3 download failed for s3://{self.bucket}/{key}: {e}")
            raise StorageError(f"S3 download failed: {e}") from e
        return response["Body"].read()
