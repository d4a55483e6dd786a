"""
EHS Hub - Evidence Stores

Blob storage for photo evidence attached to a workflow response. The core only
needs an opaque reference back; what the blob store does with the bytes is its
own business.

Uploads are checked before they reach a store: images only, bounded size.
"""

import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Optional, Dict, Tuple

from motor.motor_asyncio import AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from ... import config

logger = logging.getLogger(__name__)


class EvidenceStoreError(Exception):
    """Raised when the blob store fails to accept an upload."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EvidenceFileRejected(Exception):
    """Raised when an upload fails the type or size checks."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def validate_evidence_file(
    file_name: str,
    content_type: Optional[str],
    size: int,
    max_bytes: Optional[int] = None
) -> None:
    """
    Check an upload before storing it.

    Raises:
        EvidenceFileRejected: not an image, empty, or too large.
    """
    max_bytes = max_bytes if max_bytes is not None else config.EVIDENCE_MAX_BYTES

    if not content_type or not content_type.lower().startswith("image/"):
        raise EvidenceFileRejected(
            f"Invalid file type for {file_name}: {content_type}",
            {"file_name": file_name, "content_type": content_type}
        )
    if size <= 0:
        raise EvidenceFileRejected(f"Empty file: {file_name}", {"file_name": file_name})
    if size > max_bytes:
        raise EvidenceFileRejected(
            f"File too large: {file_name} ({size} bytes, max {max_bytes})",
            {"file_name": file_name, "size": size, "max_bytes": max_bytes}
        )


def build_blob_key(owner_id: str, file_name: str) -> str:
    """Storage key: {owner}/{epoch_ms}-{random}.{ext}"""
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "bin"
    return f"{owner_id}/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


class EvidenceStore(ABC):
    """
    Abstract base class for evidence blob stores.
    """

    @abstractmethod
    async def put_blob(
        self,
        owner_id: str,
        file_name: str,
        content: bytes,
        content_type: str
    ) -> str:
        """
        Store a blob and return its opaque reference.

        Raises:
            EvidenceStoreError: the upload did not succeed.
        """
        pass


class InMemoryEvidenceStore(EvidenceStore):
    """In-memory evidence store for testing."""

    def __init__(self, bucket: str = None):
        self.bucket = bucket or config.EVIDENCE_BUCKET
        self.blobs: Dict[str, Tuple[bytes, str]] = {}
        self.fail_uploads: Optional[str] = None

    async def put_blob(
        self,
        owner_id: str,
        file_name: str,
        content: bytes,
        content_type: str
    ) -> str:
        if self.fail_uploads:
            raise EvidenceStoreError(self.fail_uploads)
        key = build_blob_key(owner_id, file_name)
        self.blobs[key] = (content, content_type)
        return f"{self.bucket}/{key}"


class GridFSEvidenceStore(EvidenceStore):
    """
    Evidence store on a MongoDB GridFS bucket.

    References have the form `{bucket}/{owner}/{epoch_ms}-{random}.{ext}`; the
    key part is the GridFS filename.
    """

    def __init__(self, db, bucket: str = None):
        self.bucket = bucket or config.EVIDENCE_BUCKET
        self._fs = AsyncIOMotorGridFSBucket(db, bucket_name=self.bucket.replace("-", "_"))

    async def put_blob(
        self,
        owner_id: str,
        file_name: str,
        content: bytes,
        content_type: str
    ) -> str:
        key = build_blob_key(owner_id, file_name)
        try:
            await self._fs.upload_from_stream(
                key,
                content,
                metadata={
                    "owner_id": owner_id,
                    "original_name": file_name,
                    "content_type": content_type,
                }
            )
        except PyMongoError as e:
            logger.error("Evidence upload failed: owner=%s, file=%s, error=%s", owner_id, file_name, e)
            raise EvidenceStoreError(str(e), {"file_name": file_name})

        logger.info("Evidence stored: %s (%d bytes)", key, len(content))
        return f"{self.bucket}/{key}"
