"""Resumable chunked uploads: init, put-chunk, complete, cancel, status."""

import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy.orm import Session

from trove.core.config import settings
from trove.core.exceptions import (
    IntegrityCheckError, PayloadTooLargeError, QuotaExceededError,
    ResourceNotFoundError, SessionExpiredError, ValidationError,
)
from trove.core.metrics import FILES_UPLOADED
from trove.db.base import utcnow
from trove.models.file import File, UPLOAD_COMPLETED
from trove.models.upload_session import (
    UploadSession, SESSION_ACTIVE, SESSION_CANCELLED, SESSION_COMPLETED, SESSION_EXPIRED,
)
from trove.models.user import User
from trove.services.paths import sanitize_logical_path, unique_display_filename
from trove.services.quota import quota_service
from trove.storage.base import COPY_BUFFER_SIZE
from trove.storage.factory import get_storage

logger = logging.getLogger("trove")

# SQLite ignores FOR UPDATE, so session updates are also serialized in-process.
_LOCK_STRIPES = [threading.Lock() for _ in range(64)]


def _session_lock(upload_id: str) -> threading.Lock:
    return _LOCK_STRIPES[hash(upload_id) % len(_LOCK_STRIPES)]


def sessions_root() -> str:
    return os.path.join(settings.TEMP_DIR or tempfile.gettempdir(), "trove-uploads")


def remove_temp_dir(path: Optional[str], background: bool = True) -> None:
    """Delete a session's working directory, by default off the request thread."""
    if not path:
        return

    def _remove():
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Failed to clean up temp directory %s: %s", path, e)

    if background:
        threading.Thread(target=_remove, name="trove-tempdir-cleanup", daemon=True).start()
    else:
        _remove()


class ChunkedUploadService:
    """Session protocol over ``UploadSession`` rows."""

    @staticmethod
    def _get(db: Session, user: User, upload_id: str, lock: bool = False) -> UploadSession:
        query = db.query(UploadSession).filter(
            UploadSession.id == upload_id,
            UploadSession.user_id == user.id,
        )
        if lock:
            query = query.with_for_update()
        session = query.first()
        if session is None:
            raise ResourceNotFoundError("Upload session not found")
        return session

    @staticmethod
    def _require_active(db: Session, session: UploadSession) -> None:
        if session.status != SESSION_ACTIVE:
            raise ValidationError(f"Upload session is {session.status}")
        if utcnow() >= session.expires_at:
            session.status = SESSION_EXPIRED
            db.commit()
            remove_temp_dir(session.temp_dir)
            raise SessionExpiredError("Upload session has expired")

    @staticmethod
    def init(
        db: Session,
        user: User,
        filename: str,
        total_size: int,
        chunk_size: int,
        total_chunks: int,
        logical_path: str = "/",
        mime_type: Optional[str] = None,
        hash: Optional[str] = None,
    ) -> UploadSession:
        filename = os.path.basename((filename or "").strip().replace("\\", "/"))
        if not filename or total_size <= 0 or chunk_size <= 0 or total_chunks <= 0:
            raise ValidationError("Invalid upload parameters")

        path = sanitize_logical_path(logical_path)
        if not path:
            raise ValidationError("Invalid logical path")

        db.refresh(user)
        if not quota_service.has_headroom(user, total_size):
            raise QuotaExceededError("Storage quota exceeded", status_code=403)

        upload_id = str(uuid.uuid4())
        temp_dir = os.path.join(sessions_root(), upload_id)
        os.makedirs(temp_dir, exist_ok=True)

        session = UploadSession(
            id=upload_id,
            user_id=user.id,
            filename=filename,
            logical_path=path,
            total_size=total_size,
            total_chunks=total_chunks,
            chunk_size=chunk_size,
            received_chunks=0,
            chunks_received="[]",
            status=SESSION_ACTIVE,
            hash=(hash or "").strip().lower() or None,
            mime_type=mime_type or "application/octet-stream",
            temp_dir=temp_dir,
            expires_at=utcnow() + settings.UPLOAD_SESSION_TIMEOUT,
        )
        db.add(session)
        try:
            db.commit()
        except Exception:
            db.rollback()
            remove_temp_dir(temp_dir, background=False)
            raise
        logger.info(
            "Upload session %s initialized for user %d: %s (%d bytes, %d chunks)",
            upload_id, user.id, filename, total_size, total_chunks,
        )
        return session

    @staticmethod
    async def put_chunk(
        db: Session,
        user: User,
        upload_id: str,
        chunk: int,
        body: AsyncIterator[bytes],
    ) -> Dict[str, Any]:
        """Store one chunk body and record its index. Retries are idempotent."""
        session = ChunkedUploadService._get(db, user, upload_id)
        ChunkedUploadService._require_active(db, session)
        if chunk < 0 or chunk >= session.total_chunks:
            raise ValidationError("Invalid chunk number")

        limit = session.total_size
        chunk_path = os.path.join(session.temp_dir, f"chunk_{chunk}")
        written = 0
        try:
            with open(chunk_path, "wb") as fh:
                async for block in body:
                    written += len(block)
                    if written > limit:
                        raise PayloadTooLargeError("Chunk exceeds upload size")
                    fh.write(block)
        except PayloadTooLargeError:
            os.remove(chunk_path)
            raise
        db.rollback()

        with _session_lock(upload_id):
            try:
                locked = ChunkedUploadService._get(db, user, upload_id, lock=True)
                if locked.status != SESSION_ACTIVE:
                    raise ValidationError(f"Upload session is {locked.status}")
                received = locked.chunk_list()
                if chunk not in received:
                    received.append(chunk)
                    locked.chunks_received = json.dumps(received)
                    locked.received_chunks = len(received)
                db.commit()
            except Exception:
                db.rollback()
                raise

        return {
            "chunk": chunk,
            "received_chunks": locked.received_chunks,
            "total_chunks": locked.total_chunks,
        }

    @staticmethod
    def complete(db: Session, user: User, upload_id: str) -> File:
        """Assemble, verify, store and index the uploaded file."""
        with _session_lock(upload_id):
            session = ChunkedUploadService._get(db, user, upload_id, lock=True)
            if session.status != SESSION_ACTIVE:
                raise ValidationError(f"Upload session is {session.status}")

            if session.received_chunks != session.total_chunks:
                raise ValidationError(
                    f"Missing chunks: {session.received_chunks}/{session.total_chunks} received"
                )
            received = sorted(session.chunk_list())
            if received != list(range(session.total_chunks)):
                raise ValidationError(
                    f"Chunk count mismatch: expected {session.total_chunks}, "
                    f"got {len(set(received))} unique chunks"
                )

            assembled = os.path.join(session.temp_dir, "complete")
            hasher = hashlib.sha256()
            size = 0
            with open(assembled, "wb") as out:
                for index in range(session.total_chunks):
                    chunk_path = os.path.join(session.temp_dir, f"chunk_{index}")
                    try:
                        with open(chunk_path, "rb") as part:
                            while True:
                                block = part.read(COPY_BUFFER_SIZE)
                                if not block:
                                    break
                                hasher.update(block)
                                out.write(block)
                                size += len(block)
                    except FileNotFoundError:
                        raise ValidationError(f"Missing chunk {index}")

            digest = hasher.hexdigest()
            if session.hash and session.hash != digest:
                logger.warning("Upload %s failed integrity check", upload_id)
                raise IntegrityCheckError("File integrity check failed")
            if size != session.total_size:
                logger.warning("Upload %s size mismatch: expected %d, got %d", upload_id, session.total_size, size)
                raise IntegrityCheckError("File size mismatch")

            storage = get_storage()
            with open(assembled, "rb") as fh:
                result = storage.save(fh, session.filename, session.mime_type)

            try:
                file = File(
                    user_id=user.id,
                    storage_path=result.path,
                    logical_path=session.logical_path,
                    filename=unique_display_filename(db, user.id, session.logical_path, session.filename),
                    original_filename=session.filename,
                    file_size=result.size,
                    mime_type=session.mime_type,
                    hash=digest,
                    upload_status=UPLOAD_COMPLETED,
                )
                db.add(file)
                db.flush()
                quota_service.credit(db, user.id, session.total_size)
                session.status = SESSION_COMPLETED
                db.commit()
            except Exception:
                db.rollback()
                storage.delete(result.path)
                raise

            db.refresh(file)
            remove_temp_dir(session.temp_dir)
            FILES_UPLOADED.labels("chunked").inc()
            logger.info("Upload %s completed as file %d (%d bytes)", upload_id, file.id, file.file_size)
            return file

    @staticmethod
    def cancel(db: Session, user: User, upload_id: str) -> None:
        session = ChunkedUploadService._get(db, user, upload_id)
        if session.status == SESSION_ACTIVE:
            session.status = SESSION_CANCELLED
            db.commit()
            logger.info("Upload %s cancelled by user %d", upload_id, user.id)
        remove_temp_dir(session.temp_dir)

    @staticmethod
    def status(db: Session, user: User, upload_id: str) -> Dict[str, Any]:
        session = ChunkedUploadService._get(db, user, upload_id)
        return {
            "upload_id": session.id,
            "status": session.status,
            "received_chunks": session.received_chunks,
            "total_chunks": session.total_chunks,
            "chunks_received": sorted(session.chunk_list()),
        }

    @staticmethod
    def expire_stale(db: Session, now: Optional[datetime] = None) -> int:
        """Mark active sessions past their expiry as expired and drop their temp dirs."""
        now = now or utcnow()
        stale = db.query(UploadSession).filter(
            UploadSession.status == SESSION_ACTIVE,
            UploadSession.expires_at < now,
        ).all()
        for session in stale:
            session.status = SESSION_EXPIRED
        db.commit()
        for session in stale:
            remove_temp_dir(session.temp_dir, background=False)
        return len(stale)


chunked_upload_service = ChunkedUploadService()
