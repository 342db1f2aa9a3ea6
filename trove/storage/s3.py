"""S3-compatible storage backend on top of the MinIO client."""

import hashlib
import io
from typing import BinaryIO, Optional

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from trove.core.exceptions import StorageError, StorageNotFoundError
from trove.storage.base import StorageBackend, SaveResult, FileInfo, generate_key

# Multipart part size for streamed puts of unknown length.
PART_SIZE = 10 * 1024 * 1024

_MISSING_CODES = {"NoSuchKey", "NoSuchObject", "NotFound"}


class _HashingReader(io.RawIOBase):
    """Read-through wrapper that counts and hashes what the client pulls."""

    def __init__(self, source: BinaryIO):
        self._source = source
        self._hasher = hashlib.sha256()
        self.size = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        block = self._source.read(size)
        if block:
            self._hasher.update(block)
            self.size += len(block)
        return block

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()


class _ObjectStream(io.RawIOBase):
    """Readable stream over a get_object response that releases its connection on close."""

    def __init__(self, response):
        self._response = response

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        return self._response.read(None if size is None or size < 0 else size)

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def close(self) -> None:
        if not self.closed:
            self._response.close()
            self._response.release_conn()
        super().close()


class S3Backend(StorageBackend):
    """Stores objects in a single bucket."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: str = "",
        secure: bool = False,
    ):
        self.client = Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            region=region or None,
        )
        self.bucket = bucket
        self.region = region
        self.ensure_bucket()

    @property
    def backend_type(self) -> str:
        return "s3"

    def ensure_bucket(self) -> None:
        """Create the bucket if it doesn't exist."""
        try:
            if not self.client.bucket_exists(bucket_name=self.bucket):
                if self.region:
                    self.client.make_bucket(bucket_name=self.bucket, location=self.region)
                else:
                    self.client.make_bucket(bucket_name=self.bucket)
        except S3Error as e:
            raise StorageError(f"Failed to prepare bucket {self.bucket}: {e}")
        except HTTPError as e:
            raise StorageError(f"S3 endpoint unreachable: {e}")

    def save(
        self,
        stream: BinaryIO,
        original_filename: str = "",
        content_type: Optional[str] = None,
    ) -> SaveResult:
        key = generate_key(original_filename)
        reader = _HashingReader(stream)
        try:
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=key,
                data=reader,
                length=-1,
                content_type=content_type or "application/octet-stream",
                part_size=PART_SIZE,
            )
        except S3Error as e:
            raise StorageError(f"Failed to upload to S3: {e}")
        except HTTPError as e:
            raise StorageError(f"S3 endpoint unreachable: {e}")
        return SaveResult(path=key, size=reader.size, hash=reader.hexdigest())

    def open(self, path: str) -> BinaryIO:
        try:
            response = self.client.get_object(bucket_name=self.bucket, object_name=path)
        except S3Error as e:
            if e.code in _MISSING_CODES:
                raise StorageNotFoundError(f"File not found: {path}")
            raise StorageError(f"Failed to download from S3: {e}")
        except HTTPError as e:
            raise StorageError(f"S3 endpoint unreachable: {e}")
        return io.BufferedReader(_ObjectStream(response))

    def stat(self, path: str) -> FileInfo:
        try:
            obj = self.client.stat_object(bucket_name=self.bucket, object_name=path)
        except S3Error as e:
            if e.code in _MISSING_CODES:
                raise StorageNotFoundError(f"File not found: {path}")
            raise StorageError(f"Failed to stat S3 object: {e}")
        except HTTPError as e:
            raise StorageError(f"S3 endpoint unreachable: {e}")
        return FileInfo(
            path=path,
            size=obj.size,
            mtime=obj.last_modified,
            content_type=obj.content_type,
        )

    def delete(self, path: str) -> None:
        try:
            self.client.remove_object(bucket_name=self.bucket, object_name=path)
        except S3Error as e:
            if e.code in _MISSING_CODES:
                return
            raise StorageError(f"Failed to delete from S3: {e}")
        except HTTPError as e:
            raise StorageError(f"S3 endpoint unreachable: {e}")

    def health_check(self) -> None:
        try:
            if not self.client.bucket_exists(bucket_name=self.bucket):
                raise StorageError(f"Bucket {self.bucket} does not exist")
        except S3Error as e:
            raise StorageError(f"S3 health check failed: {e}")
        except HTTPError as e:
            raise StorageError(f"S3 endpoint unreachable: {e}")
