"""In-memory storage backend, used by the test suite."""

import io
import threading
from datetime import datetime, timezone
from typing import BinaryIO, Optional

from trove.core.exceptions import StorageNotFoundError
from trove.storage.base import StorageBackend, SaveResult, FileInfo, copy_with_hash, generate_key


class MemoryBackend(StorageBackend):
    """Keeps every object in a dict guarded by a lock."""

    def __init__(self):
        self._objects: dict[str, tuple[bytes, datetime, Optional[str]]] = {}
        self._lock = threading.Lock()

    @property
    def backend_type(self) -> str:
        return "memory"

    def save(
        self,
        stream: BinaryIO,
        original_filename: str = "",
        content_type: Optional[str] = None,
    ) -> SaveResult:
        key = generate_key(original_filename)
        buffer = io.BytesIO()
        size, digest = copy_with_hash(stream, buffer)
        with self._lock:
            self._objects[key] = (buffer.getvalue(), datetime.now(timezone.utc), content_type)
        return SaveResult(path=key, size=size, hash=digest)

    def open(self, path: str) -> BinaryIO:
        with self._lock:
            entry = self._objects.get(path)
        if entry is None:
            raise StorageNotFoundError(f"File not found: {path}")
        return io.BytesIO(entry[0])

    def stat(self, path: str) -> FileInfo:
        with self._lock:
            entry = self._objects.get(path)
        if entry is None:
            raise StorageNotFoundError(f"File not found: {path}")
        content, mtime, content_type = entry
        return FileInfo(path=path, size=len(content), mtime=mtime, content_type=content_type)

    def delete(self, path: str) -> None:
        with self._lock:
            self._objects.pop(path, None)

    def health_check(self) -> None:
        return None

    def clear(self) -> None:
        """Drop every stored object."""
        with self._lock:
            self._objects.clear()

    def file_count(self) -> int:
        with self._lock:
            return len(self._objects)
