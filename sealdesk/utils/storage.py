### sealdesk/utils/storage.py

"""
Document storage collaborators.

The engine only needs put/get/delete on opaque keys. Content is expected
to be encrypted by the caller; nothing here inspects it.
"""

# Standard library imports
import os
import uuid
from io import BytesIO
from pathlib import Path
from typing import Dict, Optional, Protocol

# Third party imports
import boto3
from botocore.exceptions import ClientError

# Local imports
from sealdesk.core.config import settings
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


class DocumentStorageError(Exception):
    """Raised when the storage backend cannot complete an operation"""


class DocumentStorage(Protocol):
    """Narrow interface consumed by the sealing pipeline"""

    def put(self, data: bytes, metadata: Optional[Dict[str, str]] = None) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


def _build_key(metadata: Optional[Dict[str, str]]) -> str:
    metadata = metadata or {}
    prefix = metadata.get("envelope_id", "unassigned")
    filename = metadata.get("filename") or f"{uuid.uuid4()}.pdf"
    return f"envelopes/{prefix}/{uuid.uuid4().hex[:8]}_{filename}"


class LocalDocumentStorage:
    """Stores documents under a directory on the local filesystem"""

    def __init__(self, root_dir: Optional[str] = None):
        self.root = Path(root_dir or settings.document_storage_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise DocumentStorageError(f"Key escapes storage root: {key}")
        return path

    def put(self, data: bytes, metadata: Optional[Dict[str, str]] = None) -> str:
        key = _build_key(metadata)
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Stored document", key=key, size=len(data))
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise DocumentStorageError(f"Document not found: {key}")
        return path.read_bytes()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            os.remove(path)


class S3DocumentStorage:
    """Stores documents in an S3 bucket"""

    def __init__(self, bucket_name: Optional[str] = None, client=None):
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.bucket_name = bucket_name or settings.s3_bucket_name

    def put(self, data: bytes, metadata: Optional[Dict[str, str]] = None) -> str:
        key = _build_key(metadata)
        content_type = (metadata or {}).get("content_type", "application/pdf")
        try:
            self.s3_client.upload_fileobj(
                BytesIO(data), self.bucket_name, key, ExtraArgs={"ContentType": content_type}
            )
        except ClientError as e:
            logger.error("Error uploading document to S3", key=key, error=str(e))
            raise DocumentStorageError(f"Upload failed for {key}") from e
        return key

    def get(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()
        except ClientError as e:
            logger.error("Error downloading document from S3", key=key, error=str(e))
            raise DocumentStorageError(f"Download failed for {key}") from e

    def delete(self, key: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            logger.error("Error deleting document from S3", key=key, error=str(e))
            raise DocumentStorageError(f"Delete failed for {key}") from e


def get_document_storage() -> DocumentStorage:
    """Build the storage backend named in settings"""
    if settings.document_storage_backend == "s3":
        return S3DocumentStorage()
    return LocalDocumentStorage()
