"""
S3 Storage Service — Client/Case Partitioned

Key layout (built server-side, never accepted from the client):

    <client_id>/<case_id>/documents/v<N>/<sanitized_file_name>
    <client_id>/<case_id>/extractions/<document_id>/v<N>.json

Every version of a document's bytes gets its own key, so replacing a file
never overwrites an earlier version. Extraction artifacts are the JSON
ExtractedDocumentData plus a `_metadata` block.

Object lifecycle:
  - put_object() stores bytes with content type and string metadata.
  - get_object() maps NoSuchKey / 404 to FileNotFoundError.
  - delete_object() is a hard delete; the document service removes every
    version key when a document is deleted.
  - list_*_versions() parse version numbers from keys, newest first.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import quote

import aioboto3
from botocore.exceptions import ClientError

from careify.core.config import settings

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")

_DOCUMENT_VERSION_RE   = re.compile(r"/v(\d+)/")
_EXTRACTION_VERSION_RE = re.compile(r"v(\d+)\.json$")


# ---------------------------------------------------------------------------
# Resource types — used to partition the case prefix
# ---------------------------------------------------------------------------

class ResourceType(str, Enum):
    DOCUMENTS   = "documents"     # uploaded files, one prefix per version
    EXTRACTIONS = "extractions"   # extraction JSON artifacts


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredObject:
    """Returned by put operations."""
    key:          str
    bucket:       str
    size_bytes:   int
    content_type: str
    etag:         str = ""
    version_id:   str | None = None


@dataclass(frozen=True)
class StoredBlob:
    """Returned by get_object."""
    key:          str
    body:         bytes
    content_type: str


@dataclass(frozen=True)
class ListedObject:
    key:           str
    last_modified: datetime
    size_bytes:    int = 0


@dataclass(frozen=True)
class VersionedKey:
    key:           str
    version:       int
    last_modified: datetime


@dataclass
class StorageConfig:
    """Bucket/region/credentials; defaults come from settings."""
    bucket:                str = field(default_factory=lambda: settings.s3_bucket)
    region:                str = field(default_factory=lambda: settings.aws_region)
    endpoint_url:          str = field(default_factory=lambda: settings.s3_endpoint_url)
    aws_access_key_id:     str = field(default_factory=lambda: settings.aws_access_key_id)
    aws_secret_access_key: str = field(default_factory=lambda: settings.aws_secret_access_key)


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def sanitize_filename(file_name: str) -> str:
    """Keep [A-Za-z0-9._-], replace the rest with "_", collapse runs, lowercase."""
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", file_name)
    return re.sub(r"_+", "_", safe).lower()


def stored_filename(document_id: Any, file_name: str) -> str:
    """Document-scoped name for the documents/v<N>/ folder; same-named uploads never share a key."""
    return f"{str(document_id).replace('-', '')[:12]}_{sanitize_filename(file_name)}"


def case_prefix(client_id: str, case_id: Any, resource: ResourceType) -> str:
    return f"{client_id}/{case_id}/{resource.value}/"


def document_key(client_id: str, case_id: Any, file_name: str, version: int = 1) -> str:
    return f"{case_prefix(client_id, case_id, ResourceType.DOCUMENTS)}v{version}/{sanitize_filename(file_name)}"


def extraction_key(client_id: str, case_id: Any, document_id: Any, version: int = 1) -> str:
    return f"{case_prefix(client_id, case_id, ResourceType.EXTRACTIONS)}{document_id}/v{version}.json"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# S3 Service
# ---------------------------------------------------------------------------

class S3StorageService:
    """
    Async S3 operations for document bytes and extraction artifacts.

    Stateless apart from its config; one instance per process is enough.
    """

    def __init__(self, config: StorageConfig | None = None) -> None:
        self._cfg = config or StorageConfig()
        self._session = aioboto3.Session()

    @property
    def bucket(self) -> str:
        return self._cfg.bucket

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._cfg.region,
            endpoint_url=self._cfg.endpoint_url or None,
            # Empty keys fall through to the default credential chain (task role).
            aws_access_key_id=self._cfg.aws_access_key_id or None,
            aws_secret_access_key=self._cfg.aws_secret_access_key or None,
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> StoredObject:
        async with self._client() as s3:
            resp = await s3.put_object(
                Bucket=self._cfg.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata or {},
            )

        logger.info("S3 upload ok | key=%s size=%d content_type=%s", key, len(body), content_type)
        return StoredObject(
            key=key,
            bucket=self._cfg.bucket,
            size_bytes=len(body),
            content_type=content_type,
            etag=resp.get("ETag", "").strip('"'),
            version_id=resp.get("VersionId"),
        )

    async def get_object(self, key: str) -> StoredBlob:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._cfg.bucket, Key=key)
                body = await resp["Body"].read()
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    raise FileNotFoundError(f"Object not found: {key}") from exc
                raise

        return StoredBlob(
            key=key,
            body=body,
            content_type=resp.get("ContentType") or "application/octet-stream",
        )

    async def delete_object(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._cfg.bucket, Key=key)
        logger.info("S3 delete | key=%s", key)

    async def exists(self, key: str) -> bool:
        async with self._client() as s3:
            try:
                await s3.head_object(Bucket=self._cfg.bucket, Key=key)
                return True
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    return False
                raise

    async def list_objects(self, prefix: str) -> list[ListedObject]:
        """All objects under prefix (follows continuation tokens)."""
        objects: list[ListedObject] = []
        kwargs: dict[str, Any] = {"Bucket": self._cfg.bucket, "Prefix": prefix}

        async with self._client() as s3:
            while True:
                resp = await s3.list_objects_v2(**kwargs)
                for obj in resp.get("Contents", []):
                    objects.append(ListedObject(
                        key=obj["Key"],
                        last_modified=obj.get("LastModified") or datetime.now(timezone.utc),
                        size_bytes=obj.get("Size", 0),
                    ))
                if not resp.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = resp["NextContinuationToken"]

        return objects

    # ------------------------------------------------------------------
    # Document bytes
    # ------------------------------------------------------------------

    async def upload_document(
        self,
        client_id: str,
        case_id: Any,
        file_name: str,
        body: bytes,
        mime_type: str,
        version: int = 1,
    ) -> StoredObject:
        key = document_key(client_id, case_id, file_name, version)
        return await self.put_object(
            key,
            body,
            mime_type,
            metadata={
                "client-id":         client_id,
                "case-id":           str(case_id),
                "original-filename": quote(file_name),   # S3 metadata must be ASCII
                "version":           str(version),
                "uploaded-at":       _utcnow_iso(),
            },
        )

    async def list_document_versions(self, client_id: str, case_id: Any) -> list[VersionedKey]:
        objects = await self.list_objects(case_prefix(client_id, case_id, ResourceType.DOCUMENTS))
        return _versioned(objects, _DOCUMENT_VERSION_RE)

    # ------------------------------------------------------------------
    # Extraction artifacts
    # ------------------------------------------------------------------

    async def upload_extraction(
        self,
        client_id: str,
        case_id: Any,
        document_id: Any,
        extracted_data: dict[str, Any],
        version: int = 1,
    ) -> StoredObject:
        key = extraction_key(client_id, case_id, document_id, version)
        payload = {
            **extracted_data,
            "_metadata": {
                "version":     version,
                "document_id": str(document_id),
                "case_id":     str(case_id),
                "client_id":   client_id,
                "saved_at":    _utcnow_iso(),
            },
        }
        return await self.put_object(
            key,
            json.dumps(payload, indent=2, default=str).encode("utf-8"),
            "application/json",
            metadata={
                "client-id":   client_id,
                "case-id":     str(case_id),
                "document-id": str(document_id),
                "version":     str(version),
            },
        )

    async def get_extraction(self, key: str) -> dict[str, Any] | None:
        """Parsed artifact, or None when the key does not exist."""
        try:
            blob = await self.get_object(key)
        except FileNotFoundError:
            return None
        return json.loads(blob.body.decode("utf-8"))

    async def list_extraction_versions(
        self,
        client_id: str,
        case_id: Any,
        document_id: Any,
    ) -> list[VersionedKey]:
        prefix = f"{case_prefix(client_id, case_id, ResourceType.EXTRACTIONS)}{document_id}/"
        objects = await self.list_objects(prefix)
        return _versioned(objects, _EXTRACTION_VERSION_RE)


def _versioned(objects: list[ListedObject], pattern: re.Pattern[str]) -> list[VersionedKey]:
    versions = [
        VersionedKey(key=obj.key, version=int(match.group(1)), last_modified=obj.last_modified)
        for obj in objects
        if (match := pattern.search(obj.key))
    ]
    return sorted(versions, key=lambda v: v.version, reverse=True)
