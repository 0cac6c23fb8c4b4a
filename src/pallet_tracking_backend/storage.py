"""
Object storage for delivery documents.

This module provides functionality for:
- Uploading Bill of Lading photos
- Uploading signature PNGs captured as data URIs
- Deleting stored objects
- Building the public URL of a stored object

Objects go to the S3 bucket named by STORAGE_BUCKET_NAME. When no bucket is
configured (local development, tests) they are written under the local upload
directory instead, which the API serves as static files.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .utils import decode_data_uri, ensure_directory, now_millis, sanitize_label, split_extension

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when an object cannot be stored or removed."""


class StorageService:
    """
    Uploads delivery files to S3 or to a local directory.

    Attributes:
        bucket: S3 bucket name, empty for local storage
        local_root: Directory used when no bucket is configured
    """

    def __init__(
        self,
        bucket: str = "",
        *,
        public_base_url: str = "",
        local_root: Path | None = None,
        local_url_prefix: str = "/uploads",
        cache_control: str = "max-age=3600",
        photo_prefix: str = "bill-of-lading",
        signature_prefix: str = "signatures",
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url
        self.local_root = local_root or Path("uploads")
        self.local_url_prefix = local_url_prefix.rstrip("/")
        self.cache_control = cache_control
        self.photo_prefix = photo_prefix
        self.signature_prefix = signature_prefix
        self._client = client
        if not self.bucket:
            ensure_directory(self.local_root)

    @classmethod
    def from_config(cls, settings: Dict[str, Any]) -> "StorageService":
        return cls(
            bucket=settings.get("bucket") or "",
            public_base_url=settings.get("public_base_url") or "",
            local_root=Path(settings.get("local_root") or "uploads"),
            local_url_prefix=settings.get("local_url_prefix") or "/uploads",
            cache_control=settings.get("cache_control") or "max-age=3600",
            photo_prefix=settings.get("photo_prefix") or "bill-of-lading",
            signature_prefix=settings.get("signature_prefix") or "signatures",
        )

    @property
    def uses_bucket(self) -> bool:
        return bool(self.bucket)

    def _get_client(self):
        """
        Get or create the S3 client.

        Credentials are not probed here; credential errors surface on the first
        actual upload.
        """
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def public_url(self, key: str) -> str:
        if not self.uses_bucket:
            return f"{self.local_url_prefix}/{key}"
        base = self.public_base_url or f"https://{self.bucket}.s3.amazonaws.com"
        return f"{base.rstrip('/')}/{key}"

    def key_from_url(self, url: str) -> Optional[str]:
        """Inverse of public_url; None for URLs this service did not produce."""
        prefix = self.public_url("")
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):] or None

    def upload_bytes(self, key: str, payload: bytes, content_type: str) -> str:
        """
        Store a payload under key.

        Returns:
            The public URL of the stored object

        Raises:
            StorageError: If the upload fails
        """
        if not self.uses_bucket:
            destination = self.local_root / key
            try:
                ensure_directory(destination.parent)
                destination.write_bytes(payload)
            except OSError as e:
                logger.error(f"Local upload failed for {key}: {e}")
                raise StorageError(f"Failed to upload file: {e}") from e
            logger.info(f"Stored {key} locally at {destination}")
            return self.public_url(key)

        try:
            logger.info(f"Uploading {key} to s3://{self.bucket}/{key}")
            self._get_client().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=payload,
                ContentType=content_type,
                CacheControl=self.cache_control,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: {e}")
            raise StorageError(f"Failed to upload file: {e}") from e
        logger.info(f"Upload successful: s3://{self.bucket}/{key}")
        return self.public_url(key)

    def upload_delivery_photo(
        self,
        filename: str,
        payload: bytes,
        delivery_id: str,
        content_type: Optional[str] = None,
    ) -> str:
        extension = split_extension(filename)[1].lstrip(".").lower() or "jpg"
        safe_id = sanitize_label(delivery_id, fallback="delivery")
        key = f"{self.photo_prefix}/{safe_id}-{now_millis()}.{extension}"
        return self.upload_bytes(key, payload, content_type or "application/octet-stream")

    def upload_signature(self, signature_data_uri: str, delivery_id: str) -> str:
        """
        Upload a signature captured as a PNG data URI.

        Raises:
            StorageError: If the data URI cannot be decoded or the upload fails
        """
        try:
            _, png = decode_data_uri(signature_data_uri)
        except ValueError as e:
            raise StorageError(f"Failed to upload signature: {e}") from e

        safe_id = sanitize_label(delivery_id, fallback="delivery")
        key = f"{self.signature_prefix}/{safe_id}-signature-{now_millis()}.png"
        try:
            return self.upload_bytes(key, png, "image/png")
        except StorageError as e:
            raise StorageError(f"Failed to upload signature: {e}") from e

    def delete_object(self, key: str) -> None:
        if not self.uses_bucket:
            try:
                (self.local_root / key).unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Delete error: {e}")
                raise StorageError(f"Failed to delete file: {e}") from e
            return

        try:
            self._get_client().delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Delete error: {e}")
            raise StorageError(f"Failed to delete file: {e}") from e
        logger.info(f"Deleted s3://{self.bucket}/{key}")
