"""Local filesystem storage backend."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Optional

from trove.core.exceptions import StorageError, StorageNotFoundError
from trove.storage.base import StorageBackend, SaveResult, FileInfo, copy_with_hash, generate_key


class DiskBackend(StorageBackend):
    """Stores objects as flat files under a single root directory."""

    def __init__(self, base_path: str):
        self.base_path = Path(base_path).resolve()
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage directory: {e}")

    @property
    def backend_type(self) -> str:
        return "disk"

    def _resolve(self, path: str) -> Path:
        """Map a key into the root, refusing anything that escapes it."""
        target = (self.base_path / path).resolve()
        if target == self.base_path or self.base_path not in target.parents:
            raise StorageNotFoundError(f"Invalid storage path: {path}")
        return target

    def save(
        self,
        stream: BinaryIO,
        original_filename: str = "",
        content_type: Optional[str] = None,
    ) -> SaveResult:
        key = generate_key(original_filename)
        target = self._resolve(key)
        try:
            with open(target, "xb") as fh:
                size, digest = copy_with_hash(stream, fh)
        except OSError as e:
            target.unlink(missing_ok=True)
            raise StorageError(f"Failed to write file: {e}")
        return SaveResult(path=key, size=size, hash=digest)

    def open(self, path: str) -> BinaryIO:
        target = self._resolve(path)
        try:
            return open(target, "rb")
        except FileNotFoundError:
            raise StorageNotFoundError(f"File not found: {path}")
        except OSError as e:
            raise StorageError(f"Failed to open file: {e}")

    def stat(self, path: str) -> FileInfo:
        target = self._resolve(path)
        try:
            info = target.stat()
        except FileNotFoundError:
            raise StorageNotFoundError(f"File not found: {path}")
        except OSError as e:
            raise StorageError(f"Failed to stat file: {e}")
        return FileInfo(
            path=path,
            size=info.st_size,
            mtime=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
        )

    def delete(self, path: str) -> None:
        try:
            target = self._resolve(path)
        except StorageNotFoundError:
            return
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete file: {e}")

    def health_check(self) -> None:
        if not os.access(self.base_path, os.R_OK | os.W_OK):
            raise StorageError(f"Storage directory not accessible: {self.base_path}")
