import logging
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from docguard.config import Settings
from docguard.errors import ConfigurationError, NotFound, TierUnavailable
from docguard.services.storage import DiskStorage, StorageTier, TimeoutTier, UnavailableTier

logger = logging.getLogger("docguard.object_store")

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class LocalObjectStore(DiskStorage):
    """Filesystem-backed bucket, used for development and tests."""

    name = "object_store"

    def __init__(self, root: Path, bucket: str):
        super().__init__(Path(root) / bucket)
        self.bucket = bucket


class S3ObjectStore(StorageTier):
    name = "object_store"

    def __init__(self, client, bucket: str, prefix: str = ""):
        if not bucket:
            raise ConfigurationError("object store bucket is not configured", tier=self.name)
        self._client = client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        if not settings.object_store_bucket:
            raise ConfigurationError("DOCGUARD_OBJECT_STORE_BUCKET is empty", tier=cls.name)
        if bool(settings.object_store_access_key) != bool(settings.object_store_secret_key):
            raise ConfigurationError("object store credentials are incomplete", tier=cls.name)
        session = boto3.session.Session(
            aws_access_key_id=settings.object_store_access_key or None,
            aws_secret_access_key=settings.object_store_secret_key or None,
            region_name=settings.object_store_region or None,
        )
        client = session.client(
            "s3",
            endpoint_url=settings.object_store_endpoint or None,
            config=Config(
                connect_timeout=settings.tier_timeout_seconds,
                read_timeout=settings.tier_timeout_seconds,
                # Retrying is the queue's job.
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        return cls(client, settings.object_store_bucket, settings.object_store_prefix)

    def _full_key(self, key: str) -> str:
        key = key.lstrip("/")
        return f"{self._prefix}/{key}" if self._prefix else key

    def _strip_prefix(self, full_key: str) -> str:
        if self._prefix and full_key.startswith(self._prefix + "/"):
            return full_key[len(self._prefix) + 1:]
        return full_key

    def _unavailable(self, exc: Exception, key: str | None = None) -> TierUnavailable:
        return TierUnavailable(str(exc), tier=self.name, key=key)

    @staticmethod
    def _is_missing(exc: ClientError) -> bool:
        return str(exc.response.get("Error", {}).get("Code", "")) in _MISSING_CODES

    def put(self, data: bytes, key: str) -> str:
        try:
            self._client.put_object(Bucket=self._bucket, Key=self._full_key(key), Body=data)
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable(exc, key) from exc
        return key

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self._full_key(key))
            return response["Body"].read()
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFound(f"{key} not in bucket {self._bucket}", tier=self.name, key=key) from exc
            raise self._unavailable(exc, key) from exc
        except BotoCoreError as exc:
            raise self._unavailable(exc, key) from exc

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=self._full_key(key))
            return True
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise self._unavailable(exc, key) from exc
        except BotoCoreError as exc:
            raise self._unavailable(exc, key) from exc

    def delete(self, key: str) -> bool:
        if not self.exists(key):
            return False
        try:
            self._client.delete_object(Bucket=self._bucket, Key=self._full_key(key))
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable(exc, key) from exc
        return True

    def size(self, key: str) -> int:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=self._full_key(key))
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFound(f"{key} not in bucket {self._bucket}", tier=self.name, key=key) from exc
            raise self._unavailable(exc, key) from exc
        except BotoCoreError as exc:
            raise self._unavailable(exc, key) from exc
        return int(response.get("ContentLength", 0))

    def list_keys(self, prefix: str = "") -> list[str]:
        keys = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=self._full_key(prefix)):
                for item in page.get("Contents", []):
                    keys.append(self._strip_prefix(item["Key"]))
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable(exc) from exc
        return sorted(keys)


def create_object_store(settings: Settings) -> StorageTier:
    backend = settings.object_store_backend.strip().lower()
    try:
        if backend == "local":
            store = LocalObjectStore(settings.object_store_path, settings.object_store_bucket)
        elif backend == "s3":
            store = S3ObjectStore.from_settings(settings)
        elif backend == "disabled":
            return UnavailableTier("object_store", "object storage is disabled")
        else:
            raise ConfigurationError(f"unknown object store backend {backend!r}", tier="object_store")
    except (ConfigurationError, BotoCoreError, OSError) as exc:
        logger.error("Object store misconfigured, marking tier unavailable: %s", exc)
        return UnavailableTier("object_store", str(exc))
    return TimeoutTier(store, settings.tier_timeout_seconds)
