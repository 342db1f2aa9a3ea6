"""Streaming multipart upload: body -> temp file + sha256 -> index row -> worker pool."""

import hashlib
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from python_multipart.multipart import MultipartParser, parse_options_header
from sqlalchemy.orm import Session

from trove.core.config import settings
from trove.core.exceptions import (
    PayloadTooLargeError, QueueFullError, QuotaExceededError, ValidationError,
)
from trove.core.metrics import FILES_UPLOADED
from trove.models.file import File, UPLOAD_COMPLETED, UPLOAD_PENDING
from trove.models.user import User
from trove.services.paths import sanitize_logical_path, unique_display_filename
from trove.services.quota import quota_service
from trove.services.upload_worker import UploadJob, remove_temp, upload_pool

logger = logging.getLogger("trove")

FOLDER_FIELD_LIMIT = 1024
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class StagedUpload:
    """What the parser captured from the request body."""
    folder: str = "/"
    filename: str = ""
    mime_type: str = DEFAULT_MIME_TYPE
    temp_path: Optional[str] = None
    size: int = 0
    hash: str = ""


@dataclass
class UploadOutcome:
    file: File
    folder: str
    deduplicated: bool

    @property
    def message(self) -> str:
        if self.deduplicated:
            return f'File "{self.file.filename}" uploaded (deduplicated)'
        if self.file.filename != self.file.original_filename:
            return f'File uploaded as "{self.file.filename}"'
        return "File uploaded successfully."


def temp_root() -> str:
    return settings.TEMP_DIR or tempfile.gettempdir()


def too_large() -> PayloadTooLargeError:
    return PayloadTooLargeError(f"File too large (max {settings.MAX_UPLOAD_SIZE // (1024 * 1024)} MB)")


class _PartCollector:
    """Receives python-multipart callbacks and routes part data.

    The ``folder`` field is buffered up to a small cap; the first ``file`` part
    with a filename is streamed into a temp file while hashing. Everything else
    is discarded.
    """

    def __init__(self, staged: StagedUpload):
        self.staged = staged
        self._header_field = b""
        self._header_value = b""
        self._headers: dict[bytes, bytes] = {}
        self._target: Optional[str] = None
        self._folder = bytearray()
        self._sink = None
        self._hasher = None
        self.file_seen = False

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
        }

    def on_part_begin(self) -> None:
        self._headers = {}
        self._target = None

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode("latin-1")
        filename = options.get(b"filename")

        if name == "folder":
            self._target = "folder"
            self._folder = bytearray()
        elif name == "file" and filename and not self.file_seen:
            self.file_seen = True
            self._target = "file"
            self.staged.filename = os.path.basename(filename.decode("utf-8", "replace").replace("\\", "/"))
            content_type = self._headers.get(b"content-type", b"").decode("latin-1").strip()
            self.staged.mime_type = content_type or DEFAULT_MIME_TYPE
            fd, path = tempfile.mkstemp(prefix="trove-upload-", dir=temp_root())
            self.staged.temp_path = path
            self._sink = os.fdopen(fd, "wb")
            self._hasher = hashlib.sha256()

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._target == "file":
            chunk = data[start:end]
            self._sink.write(chunk)
            self._hasher.update(chunk)
            self.staged.size += len(chunk)
        elif self._target == "folder":
            room = FOLDER_FIELD_LIMIT - len(self._folder)
            if room > 0:
                self._folder += data[start:start + min(room, end - start)]

    def on_part_end(self) -> None:
        if self._target == "file":
            self._sink.close()
            self._sink = None
            self.staged.hash = self._hasher.hexdigest()
        elif self._target == "folder":
            self.staged.folder = self._folder.decode("utf-8", "replace")
        self._target = None

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()
            self._sink = None


class UploadService:
    """Ingests single-file multipart uploads."""

    @staticmethod
    async def stage(request: Request) -> StagedUpload:
        """Stream the request body into a temp file.

        The caller owns ``temp_path`` on the returned object, including on
        error: a partially written temp file is removed before raising.
        """
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > settings.MAX_UPLOAD_SIZE:
            logger.info("Upload rejected: Content-Length %s exceeds limit", declared)
            raise too_large()

        content_type, params = parse_options_header(request.headers.get("content-type", ""))
        if content_type != b"multipart/form-data":
            raise ValidationError("Invalid content type")
        boundary = params.get(b"boundary")
        if not boundary:
            raise ValidationError("Missing multipart boundary")

        staged = StagedUpload()
        collector = _PartCollector(staged)
        parser = MultipartParser(boundary, collector.callbacks())
        received = 0
        try:
            async for chunk in request.stream():
                received += len(chunk)
                if received > settings.MAX_UPLOAD_SIZE:
                    logger.info("Upload rejected: body exceeded limit while streaming")
                    raise too_large()
                parser.write(chunk)
            parser.finalize()
        except BaseException:
            collector.close()
            remove_temp(staged.temp_path)
            raise
        finally:
            collector.close()

        if not collector.file_seen or staged.temp_path is None:
            raise ValidationError("No file provided")
        return staged

    @staticmethod
    def commit(db: Session, user: User, staged: StagedUpload) -> UploadOutcome:
        """Admit a staged upload: quota check, dedup lookup, index row, worker hand-off.

        On success the temp file belongs to the worker pool (or is already gone).
        On error the caller must still remove it.
        """
        folder = sanitize_logical_path(staged.folder)
        if not folder:
            raise ValidationError("Invalid folder path")

        db.refresh(user)
        if not quota_service.has_headroom(user, staged.size):
            raise QuotaExceededError("Storage quota exceeded")

        display_name = unique_display_filename(db, user.id, folder, staged.filename)

        existing = db.query(File).filter(
            File.user_id == user.id,
            File.hash == staged.hash,
            File.upload_status == UPLOAD_COMPLETED,
        ).first()

        record = File(
            user_id=user.id,
            logical_path=folder,
            filename=display_name,
            original_filename=staged.filename,
            file_size=staged.size,
            mime_type=staged.mime_type,
            hash=staged.hash,
        )
        if existing is not None:
            record.storage_path = existing.storage_path
            record.upload_status = UPLOAD_COMPLETED
            logger.info("Deduplication: hash %s... exists, reusing %s", staged.hash[:16], existing.storage_path)
        else:
            record.storage_path = f"pending-{uuid.uuid4()}{os.path.splitext(staged.filename)[1]}"
            record.upload_status = UPLOAD_PENDING
            record.temp_path = staged.temp_path

        db.add(record)
        db.flush()
        quota_service.credit(db, user.id, staged.size)
        db.commit()
        db.refresh(record)
        FILES_UPLOADED.labels("stream").inc()

        if existing is not None:
            remove_temp(staged.temp_path)
            return UploadOutcome(file=record, folder=folder, deduplicated=True)

        try:
            upload_pool.enqueue(UploadJob(file_id=record.id, temp_path=staged.temp_path))
        except QueueFullError as e:
            logger.warning("Upload queue full, marking file %d as failed", record.id)
            upload_pool.mark_failed(db, record, e.message)
            remove_temp(staged.temp_path)
        return UploadOutcome(file=record, folder=folder, deduplicated=False)


upload_service = UploadService()
