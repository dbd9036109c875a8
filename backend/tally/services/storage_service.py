"""Read-only object storage access for the pipeline.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **minio** (default): objects are read from the configured MinIO bucket.
2. **filesystem**: keys are paths relative to ``settings.STORAGE_DIRECTORY``.

The ingestion layer decides where uploads go; the pipeline only needs
``fetch(image_ref)``. Any read failure is raised as ``StorageError``,
which fails the job. Transport retries are the storage client's
business, not the pipeline's.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path, PurePosixPath
from typing import Optional

from minio import Minio
from minio.error import S3Error

from tally.core.config import settings
from tally.core.errors import StorageError

logger = logging.getLogger(__name__)

_SUFFIX_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


def mime_type_for(image_ref: str) -> str:
    """Guess the MIME type of a stored object from its key suffix."""
    suffix = PurePosixPath(image_ref).suffix.lower()
    if suffix in _SUFFIX_MIME_TYPES:
        return _SUFFIX_MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(image_ref)
    return guessed or "application/octet-stream"


class ObjectStorage:
    """Unified read access to receipt images (MinIO or filesystem)."""

    def __init__(self, backend: Optional[str] = None, base_dir: Optional[str] = None, client: Optional[Minio] = None) -> None:
        self.backend = (backend or settings.STORAGE_BACKEND or "minio").lower()
        if self.backend == "minio":
            self._client = client or Minio(
                settings.MINIO_ENDPOINT,
                access_key=settings.MINIO_ACCESS_KEY,
                secret_key=settings.MINIO_SECRET_KEY,
                secure=bool(settings.MINIO_USE_SSL),
            )
            self.bucket = settings.MINIO_BUCKET_NAME
        elif self.backend == "filesystem":
            base_path = Path(base_dir or settings.STORAGE_DIRECTORY)
            if not base_path.is_absolute():
                repo_root = Path(__file__).resolve().parents[3]
                base_path = (repo_root / base_path).resolve()
            self.base_dir = base_path
        else:
            raise ValueError(f"Unsupported storage backend: {self.backend}")

    def fetch(self, image_ref: str) -> bytes:
        """Return the raw bytes stored under ``image_ref``.

        :raises StorageError: when the object is missing or cannot be read
        """
        logger.debug("[storage] fetch key=%s backend=%s", image_ref, self.backend)
        if self.backend == "minio":
            return self._fetch_minio(image_ref)
        return self._fetch_file(image_ref)

    def _fetch_minio(self, image_ref: str) -> bytes:
        try:
            resp = self._client.get_object(self.bucket, image_ref)
            try:
                data = resp.read()
            finally:
                resp.close()
                resp.release_conn()
        except S3Error as exc:
            raise StorageError(f"Object not found: {image_ref} ({exc.code})") from exc
        except Exception as exc:
            raise StorageError(f"MinIO download failed for {image_ref}: {exc}") from exc
        logger.info("[storage] MinIO get ok key=%s bytes=%d", image_ref, len(data))
        return data

    def _fetch_file(self, image_ref: str) -> bytes:
        path = (self.base_dir / image_ref).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise StorageError(f"Refusing to read outside the storage directory: {image_ref}")
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"File not found: {image_ref}") from exc
        except OSError as exc:
            raise StorageError(f"Could not read {image_ref}: {exc}") from exc
