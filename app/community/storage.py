"""
Blob storage for user uploads (post media and study sources).

Keys look like ``<category>/<owner id>/<yyyy-mm-dd>/<token>-<filename>``. The
database only ever stores the key, so switching backends is a config change.
"""
from __future__ import annotations

import hashlib
import io
import logging
import secrets
from dataclasses import dataclass
from datetime import date
from functools import cached_property
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _resolve(self, key: str) -> Path:
        root = self.root.resolve()
        target = (root / key.replace("\\", "/").lstrip("/")).resolve()
        if root not in target.parents:
            raise StorageError(f"Refusing key outside storage root: {key}")
        return target

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        target = self._resolve(key)
        if not target.is_file():
            raise StorageError(f"No stored file for key {key}")
        return target.open("rb")

    def delete(self, key: str) -> None:
        self._resolve(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class S3Storage(Storage):
    """S3-compatible bucket (AWS, DigitalOcean Spaces, MinIO)."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    @cached_property
    def client(self):
        import boto3

        endpoint = self.endpoint
        if endpoint and not endpoint.startswith(("http://", "https://")):
            endpoint = f"https://{endpoint}"
        return boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        kwargs: dict[str, object] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload to bucket {self.bucket} failed for {key}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            body = self.client.get_object(Bucket=self.bucket, Key=key)["Body"]
            return io.BytesIO(body.read())
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"No stored object for key {key}") from e

    def delete(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Delete from bucket {self.bucket} failed for {key}: {e}") from e


def storage_from_config(config: dict) -> Storage:
    if (config.get("STORAGE_BACKEND") or "local").strip().lower() != "s3":
        return LocalStorage(root=Path(config.get("STORAGE_ROOT") or "storage"))
    return S3Storage(
        endpoint=(config.get("S3_ENDPOINT") or "").strip(),
        region=(config.get("S3_REGION") or "").strip(),
        bucket=(config.get("S3_BUCKET") or "").strip(),
        access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
        secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
    )


def build_storage_key(category: str, owner_id: int, filename: str, upload_date: date | None = None) -> str:
    day = (upload_date or date.today()).isoformat()
    name = secure_filename(filename) or "upload.bin"
    return f"{category}/{owner_id}/{day}/{secrets.token_hex(4)}-{name}"


def file_digest_and_size(file_bytes: bytes) -> tuple[str, int]:
    return hashlib.sha256(file_bytes).hexdigest(), len(file_bytes)


def file_extension(filename: str) -> str:
    _, dot, ext = (filename or "").rpartition(".")
    return ext.lower() if dot else ""


def discard_upload(storage: Storage, key: str) -> None:
    """Remove a freshly written object whose database row never made it to a commit."""
    try:
        storage.delete(key)
    except StorageError:
        logger.warning("Orphaned upload left in storage: %s", key, exc_info=True)
