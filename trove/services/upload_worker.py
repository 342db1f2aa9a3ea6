"""Background pool that moves staged uploads from temp files into storage."""

import logging
import os
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from trove.core.config import settings
from trove.core.exceptions import QueueFullError
from trove.db.session import SessionLocal
from trove.models.file import File, UPLOAD_COMPLETED, UPLOAD_FAILED, UPLOAD_UPLOADING
from trove.storage.base import StorageBackend
from trove.storage.factory import get_storage

MAX_ERROR_LENGTH = 500

default_logger = logging.getLogger("trove")


@dataclass
class UploadJob:
    file_id: int
    temp_path: str


def truncate_error(message: str) -> str:
    """Cap a failure message at 500 characters, ending in an ellipsis when cut."""
    if len(message) > MAX_ERROR_LENGTH:
        return message[: MAX_ERROR_LENGTH - 3] + "..."
    return message


def remove_temp(path: Optional[str], logger: logging.Logger = default_logger) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temp file %s: %s", path, e)


class UploadWorkerPool:
    """Fixed set of threads draining a bounded job queue."""

    def __init__(
        self,
        workers: int = settings.UPLOAD_WORKERS,
        queue_size: int = settings.UPLOAD_QUEUE_SIZE,
        session_factory: Callable[[], Session] = SessionLocal,
        storage_factory: Callable[[], StorageBackend] = get_storage,
        logger: logging.Logger = default_logger,
    ):
        self.workers = max(workers, 1)
        self.queue: "queue.Queue[Optional[UploadJob]]" = queue.Queue(maxsize=max(queue_size, 1))
        self.session_factory = session_factory
        self.storage_factory = storage_factory
        self.logger = logger
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            for n in range(self.workers):
                thread = threading.Thread(target=self._run, name=f"upload-worker-{n}", daemon=True)
                thread.start()
                self._threads.append(thread)
            self.logger.info("Upload worker pool started with %d workers", self.workers)

    def enqueue(self, job: UploadJob) -> None:
        """Hand a job to the pool.

        Raises:
            QueueFullError: If the queue is at capacity.
        """
        self.start()
        try:
            self.queue.put_nowait(job)
        except queue.Full:
            raise QueueFullError("Upload queue is full. Please try again later.")
        self.logger.info("Queued file %d for background upload", job.file_id)

    def wait_for_pending_uploads(self) -> None:
        """Block until every queued job has been processed."""
        self.queue.join()

    def shutdown(self) -> None:
        """Drain the queue, then stop every worker."""
        with self._lock:
            threads, self._threads = self._threads, []
        if not threads:
            return
        for _ in threads:
            self.queue.put(None)
        for thread in threads:
            thread.join()
        self.logger.info("Upload worker pool stopped")

    def _run(self) -> None:
        while True:
            job = self.queue.get()
            try:
                if job is None:
                    return
                self.process(job)
            except Exception:
                self.logger.exception("Upload worker crashed on job %s", job)
            finally:
                self.queue.task_done()

    def process(self, job: UploadJob) -> None:
        db = self.session_factory()
        try:
            self._process(db, job)
        except Exception as e:
            db.rollback()
            self.logger.exception("Upload of file %d failed unexpectedly", job.file_id)
            file = db.get(File, job.file_id)
            if file is not None and file.upload_status != UPLOAD_COMPLETED:
                self.mark_failed(db, file, f"Upload failed: {e}")
            remove_temp(job.temp_path, self.logger)
        finally:
            db.close()

    def _process(self, db: Session, job: UploadJob) -> None:
        file = db.get(File, job.file_id)
        if file is None:
            self.logger.info("File %d no longer exists, dropping upload job", job.file_id)
            remove_temp(job.temp_path, self.logger)
            return

        file.upload_status = UPLOAD_UPLOADING
        db.commit()

        # Another request may have completed the same content meanwhile.
        existing = db.query(File).filter(
            File.user_id == file.user_id,
            File.hash == file.hash,
            File.upload_status == UPLOAD_COMPLETED,
            File.id != file.id,
        ).first()
        if existing is not None:
            file.storage_path = existing.storage_path
            file.upload_status = UPLOAD_COMPLETED
            file.temp_path = None
            db.commit()
            remove_temp(job.temp_path, self.logger)
            self.logger.info("File %d deduplicated onto %s", file.id, existing.storage_path)
            return

        try:
            storage = self.storage_factory()
            with open(job.temp_path, "rb") as fh:
                result = storage.save(fh, file.original_filename, file.mime_type)
        except Exception as e:
            # Any backend failure, transport errors included, must end in a terminal state.
            self.logger.error("Storage upload failed for file %d: %s", file.id, e)
            self.mark_failed(db, file, f"Storage upload failed: {e}")
            return
        finally:
            remove_temp(job.temp_path, self.logger)

        try:
            file.storage_path = result.path
            file.upload_status = UPLOAD_COMPLETED
            file.temp_path = None
            db.commit()
        except Exception:
            db.rollback()
            storage.delete(result.path)
            raise
        self.logger.info("File %d stored at %s (%d bytes)", file.id, result.path, result.size)

    def mark_failed(self, db: Session, file: File, message: str) -> None:
        """Keep the row so the user can see the failure and dismiss it."""
        message = truncate_error(message)
        try:
            file.upload_status = UPLOAD_FAILED
            file.error_message = message
            file.temp_path = None
            db.commit()
        except Exception:
            db.rollback()
            self.logger.exception("Failed to mark file %d as failed", file.id)
            return
        self.logger.info("Marked file %d as failed: %s", file.id, message)


upload_pool = UploadWorkerPool()
