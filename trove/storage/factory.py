"""Build the configured storage backend."""

import logging
import threading
from typing import Optional

from trove.core.config import Settings, settings
from trove.storage.base import StorageBackend
from trove.storage.disk import DiskBackend
from trove.storage.memory import MemoryBackend

logger = logging.getLogger("trove")

_storage: Optional[StorageBackend] = None
_storage_lock = threading.Lock()


def create_storage_backend(config: Settings) -> StorageBackend:
    """Instantiate the backend named by STORAGE_BACKEND."""
    kind = config.STORAGE_BACKEND.strip().lower()
    if kind in ("disk", "local", "filesystem"):
        return DiskBackend(config.STORAGE_PATH)
    if kind == "s3":
        from trove.storage.s3 import S3Backend

        return S3Backend(
            endpoint=config.S3_ENDPOINT,
            access_key=config.S3_ACCESS_KEY,
            secret_key=config.S3_SECRET_KEY,
            bucket=config.S3_BUCKET,
            region=config.S3_REGION,
            secure=config.S3_SECURE,
        )
    if kind == "memory":
        return MemoryBackend()
    raise ValueError(f"unknown storage backend: {config.STORAGE_BACKEND}")


def get_storage() -> StorageBackend:
    """Process-wide storage backend, created on first use."""
    global _storage
    if _storage is None:
        with _storage_lock:
            if _storage is None:
                _storage = create_storage_backend(settings)
                logger.info("Storage backend ready: %s", _storage.backend_type)
    return _storage
