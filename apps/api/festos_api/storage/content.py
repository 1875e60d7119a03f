"""Content-addressed object store adapter for event metadata and banners.

Uses MinIO (S3-compatible). Objects are keyed by the sha256 of their bytes,
so putting identical bytes twice yields the same reference and one object.
"""

import hashlib
import json
import logging
import re
from io import BytesIO
from typing import Optional

from minio import Minio
from minio.error import S3Error

from festos_api.errors import StorageError, ValidationError
from festos_api.settings import get_settings
from festos_api.storage.base import PROVIDER_CONTENT, StorageProvider

logger = logging.getLogger(__name__)

REF_PATTERN = re.compile(r"^sha256:([0-9a-f]{64})$")
MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject", "ResourceNotFound"}


def compute_ref(data: bytes) -> str:
    """Content reference for a blob."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def object_key_for_ref(ref: str) -> str:
    """Map a content reference to its object key."""
    match = REF_PATTERN.match(ref or "")
    if not match:
        raise ValidationError(f"Invalid content reference: {ref}", field="content_ref", value=ref)
    digest = match.group(1)
    return f"content/sha256/{digest[:2]}/{digest}"


class ContentStoreProvider(StorageProvider):
    """Immutable blob storage addressed by content hash."""

    name = PROVIDER_CONTENT
    health_cache_seconds = 60.0

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        super().__init__()
        settings = get_settings()
        self.bucket = bucket or settings.minio_bucket
        self.endpoint = settings.minio_endpoint
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_use_ssl,
        )
        self._bucket_ready = False

    def _ensure_bucket(self):
        if self._bucket_ready:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_ready = True

    def _probe(self) -> dict:
        if not self.client.bucket_exists(self.bucket):
            raise StorageError(f"Bucket {self.bucket} does not exist", PROVIDER_CONTENT, "health_check")
        return {"endpoint": self.endpoint, "bucket": self.bucket}

    def get_config(self) -> dict:
        settings = get_settings()
        return {
            "endpoint": self.endpoint,
            "bucket": self.bucket,
            "secure": settings.minio_use_ssl,
            "has_access_key": bool(settings.minio_access_key),
            "has_secret_key": bool(settings.minio_secret_key),
        }

    def put(
        self,
        data: bytes,
        content_hash: Optional[str] = None,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Store a blob and return its reference.

        Args:
            data: Object bytes
            content_hash: Optional expected reference ("sha256:<hex>" or bare hex)
            content_type: MIME type

        Returns:
            Content reference "sha256:<hex>"

        Raises:
            ValidationError: If data is empty or does not match content_hash
            StorageError: If the object store call fails
        """
        if not data:
            raise ValidationError("Content must not be empty", field="content")

        ref = compute_ref(data)
        if content_hash is not None:
            expected = content_hash if content_hash.startswith("sha256:") else f"sha256:{content_hash}"
            if expected.lower() != ref:
                raise ValidationError(
                    "Content does not match supplied hash", field="content_hash", value=content_hash
                )

        object_key = object_key_for_ref(ref)
        try:
            self._ensure_bucket()
            if self._stat(object_key):
                logger.debug(f"Object already stored: {object_key}")
                return ref
            self.client.put_object(
                self.bucket,
                object_key,
                BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
            logger.debug(f"Uploaded object: {object_key} ({len(data)} bytes)")
            return ref
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to upload object {object_key}: {e}")
            raise StorageError(f"Content upload failed: {e}", PROVIDER_CONTENT, "put", e) from e

    def put_json(self, document: dict) -> str:
        """Store a JSON document with a canonical encoding."""
        data = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str).encode()
        return self.put(data, content_type="application/json")

    def _stat(self, object_key: str) -> bool:
        try:
            self.client.stat_object(self.bucket, object_key)
            return True
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                return False
            raise

    def exists(self, ref: str) -> bool:
        """Check if a reference is stored."""
        object_key = object_key_for_ref(ref)
        try:
            return self._stat(object_key)
        except Exception as e:
            raise StorageError(f"Content stat failed: {e}", PROVIDER_CONTENT, "exists", e) from e

    def get(self, ref: str) -> Optional[bytes]:
        """
        Retrieve a blob.

        Returns:
            Object bytes, or None if the reference is not stored
        """
        object_key = object_key_for_ref(ref)
        try:
            response = self.client.get_object(self.bucket, object_key)
            try:
                data = response.read()
            finally:
                response.close()
                response.release_conn()
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                return None
            logger.error(f"Failed to retrieve object {object_key}: {e}")
            raise StorageError(f"Content read failed: {e}", PROVIDER_CONTENT, "get", e) from e
        except Exception as e:
            raise StorageError(f"Content read failed: {e}", PROVIDER_CONTENT, "get", e) from e

        if compute_ref(data) != ref:
            raise StorageError(f"Content hash mismatch for {ref}", PROVIDER_CONTENT, "get")
        return data

    def get_json(self, ref: str) -> Optional[dict]:
        data = self.get(ref)
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError as e:
            raise StorageError(f"Content {ref} is not JSON: {e}", PROVIDER_CONTENT, "get_json", e) from e

    def read(self, query: dict) -> dict:
        """
        Pointed reads only: {"refs": [...]} -> records of {ref, size, document}.

        Missing references are omitted.
        """
        records = []
        for ref in query.get("refs") or []:
            data = self.get(ref)
            if data is None:
                continue
            record = {"ref": ref, "size": len(data), "document": None}
            try:
                record["document"] = json.loads(data)
            except ValueError:
                pass
            records.append(record)
        return {"records": records, "total": len(records)}
