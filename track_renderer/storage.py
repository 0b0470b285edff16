from __future__ import annotations

import logging
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from track_renderer.config import Settings
from track_renderer.constants import STORAGE_PREFIX
from track_renderer.errors import ProviderError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {"mp3": "audio/mpeg", "wav": "audio/wav"}


def _clean_key(key: str) -> str:
    return key.strip().lstrip("/").strip("'").strip('"')


def render_key(track_id: str, job_id: str, generation: int, name: str) -> str:
    """Job- and attempt-scoped object key.

    A reclaimed job gets a new claim generation, so a slow original attempt
    and its replacement never write the same object.
    """
    return f"{STORAGE_PREFIX}/{track_id}/{job_id}/{generation}/{name}"


class Storage:
    """Object storage: put bytes, get back a URL the app can hand out."""

    name = "storage"

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError


class LocalStorage(Storage):
    """Directory-backed storage for development and tests."""

    name = "local"

    def __init__(self, root: str | Path, public_base_url: str | None = None):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _path(self, key: str) -> Path:
        path = (self.root / _clean_key(key)).resolve()
        if self.root.resolve() not in path.parents:
            raise ProviderError(self.name, f"key escapes storage root: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ProviderError(self.name, f"write failed for {key}: {e}") from e
        logger.info("Stored %s (%.2fMB)", key, len(data) / 1024 / 1024)
        if self.public_base_url:
            return f"{self.public_base_url}/{_clean_key(key)}"
        return path.as_uri()

    def get(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise ProviderError(self.name, f"read failed for {key}: {e}") from e


class S3Storage(Storage):
    """S3-compatible bucket (AWS S3, Cloudflare R2, MinIO)."""

    name = "s3"

    def __init__(self, bucket: str, client, url_ttl_seconds: int = 3600):
        self.bucket = bucket
        self.client = client
        self.url_ttl_seconds = url_ttl_seconds

    @staticmethod
    def _error(action: str, key: str, e: Exception) -> ProviderError:
        status = None
        body = None
        if isinstance(e, ClientError):
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            body = e.response.get("Error", {}).get("Message")
        return ProviderError("s3", f"{action} failed for {key}: {e}", status_code=status, body=body)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        clean_key = _clean_key(key)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=clean_key,
                Body=data,
                ContentType=content_type,
            )
            url = self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": clean_key},
                ExpiresIn=self.url_ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._error("upload", clean_key, e) from e
        logger.info("Uploaded s3://%s/%s (%.2fMB)", self.bucket, clean_key, len(data) / 1024 / 1024)
        return url

    def get(self, key: str) -> bytes:
        clean_key = _clean_key(key)
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=clean_key)
            return obj["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise self._error("download", clean_key, e) from e


def build_storage(settings: Settings) -> Storage:
    settings.validate_storage_or_raise()
    if not settings.s3_required():
        return LocalStorage(settings.storage_dir, settings.storage_public_base_url)

    client = boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        region_name=settings.s3_region,
    )
    return S3Storage(settings.s3_bucket, client, settings.signed_url_ttl_seconds)
