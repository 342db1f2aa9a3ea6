"""Storage backend contract shared by every implementation."""

import hashlib
import io
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Optional

from trove.core.exceptions import StorageError

# Copy buffer for streaming saves; matches S3 multipart part size.
COPY_BUFFER_SIZE = 8 * 1024 * 1024


@dataclass
class SaveResult:
    """Outcome of a save: the backend-generated key plus what was written."""
    path: str
    size: int
    hash: str


@dataclass
class FileInfo:
    """Object metadata returned by stat."""
    path: str
    size: int
    mtime: datetime
    content_type: Optional[str] = None


def generate_key(original_filename: str) -> str:
    """Opaque object key: a fresh uuid4 keeping the original extension."""
    return str(uuid.uuid4()) + os.path.splitext(original_filename or "")[1]


def copy_with_hash(source: BinaryIO, sink) -> tuple[int, str]:
    """Copy source into sink.write in large blocks, returning (size, sha256 hex)."""
    hasher = hashlib.sha256()
    size = 0
    while True:
        block = source.read(COPY_BUFFER_SIZE)
        if not block:
            break
        hasher.update(block)
        sink.write(block)
        size += len(block)
    return size, hasher.hexdigest()


class StorageBackend(ABC):
    """Content store for uploaded files.

    Implementations must be safe for concurrent use. Keys returned by ``save``
    are opaque to callers and stay valid until ``delete`` is called on them.
    """

    @abstractmethod
    def save(
        self,
        stream: BinaryIO,
        original_filename: str = "",
        content_type: Optional[str] = None,
    ) -> SaveResult:
        """Consume stream to EOF and store it under a newly generated key."""
        ...

    @abstractmethod
    def open(self, path: str) -> BinaryIO:
        """Return a readable binary stream for the key.

        Raises:
            StorageNotFoundError: If the key does not exist.
        """
        ...

    @abstractmethod
    def stat(self, path: str) -> FileInfo:
        """Return metadata for the key.

        Raises:
            StorageNotFoundError: If the key does not exist.
        """
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove the key. Missing keys are not an error."""
        ...

    @abstractmethod
    def health_check(self) -> None:
        """Cheap liveness check; raises StorageError when unreachable."""
        ...

    def validate_access(self) -> None:
        """Write, read back, and delete a marker object. Run once at startup."""
        content = b"trove-storage-test"
        result = self.save(io.BytesIO(content), ".trove-access-test")
        try:
            with self.open(result.path) as reader:
                if reader.read() != content:
                    raise StorageError("storage read test failed: content mismatch")
        finally:
            self.delete(result.path)

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return the backend identifier (e.g., 'disk', 's3')."""
        ...
