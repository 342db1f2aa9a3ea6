"""Periodic background cleanup: trash retention and stale upload sessions."""

import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from trove.core.config import settings
from trove.db.base import utcnow
from trove.db.session import SessionLocal
from trove.models.upload_session import UploadSession, TERMINAL_STATUSES
from trove.models.user import User
from trove.services.chunked_upload_service import chunked_upload_service
from trove.services.trash_service import trash_service

default_logger = logging.getLogger("trove")

USER_BATCH_SIZE = 100


class Sweeper:
    """Runs ``run_once`` on a fixed interval in a daemon thread until stopped.

    A running iteration is never interrupted; ``stop`` waits for it to finish.
    """

    name = "sweeper"

    def __init__(
        self,
        interval: timedelta,
        session_factory: Callable[[], Session] = SessionLocal,
        run_on_start: bool = True,
        logger: logging.Logger = default_logger,
    ):
        self.interval = max(interval, timedelta(minutes=1))
        self.session_factory = session_factory
        self.run_on_start = run_on_start
        self.logger = logger
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        self.logger.info("%s started (interval %s)", self.name, self.interval)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self.logger.info("%s stopped", self.name)

    def _loop(self) -> None:
        if self.run_on_start:
            self._safe_run()
        while not self._stop.wait(self.interval.total_seconds()):
            self._safe_run()

    def _safe_run(self) -> None:
        try:
            self.run_once()
        except Exception:
            self.logger.exception("%s iteration failed", self.name)

    def run_once(self) -> int:
        raise NotImplementedError


class RetentionSweeper(Sweeper):
    """Purges trash older than each user's retention window."""

    name = "retention-sweeper"

    def __init__(self, interval: Optional[timedelta] = None, **kwargs):
        kwargs.setdefault("run_on_start", settings.ENV != "test")
        super().__init__(interval or timedelta(minutes=settings.DELETED_CLEANUP_INTERVAL_MIN), **kwargs)

    def run_once(self) -> int:
        db = self.session_factory()
        removed = 0
        try:
            last_id = 0
            while True:
                users = (
                    db.query(User)
                    .filter(User.id > last_id)
                    .order_by(User.id)
                    .limit(USER_BATCH_SIZE)
                    .all()
                )
                if not users:
                    break
                for user in users:
                    try:
                        removed += trash_service.purge_expired(db, user)
                    except Exception:
                        db.rollback()
                        self.logger.exception("Retention cleanup failed for user %d", user.id)
                last_id = users[-1].id
        finally:
            db.close()
        if removed:
            self.logger.info("Retention cleanup: permanently deleted %d files", removed)
        return removed


class SessionSweeper(Sweeper):
    """Expires idle upload sessions and drops old terminal session rows."""

    name = "upload-session-sweeper"

    def __init__(self, interval: Optional[timedelta] = None, retention_days: Optional[int] = None, **kwargs):
        super().__init__(interval or timedelta(minutes=settings.UPLOAD_SESSION_CLEANUP_INTERVAL_MIN), **kwargs)
        self.retention = timedelta(days=retention_days or settings.UPLOAD_SESSION_RETENTION_DAYS)

    def run_once(self) -> int:
        db = self.session_factory()
        try:
            now = utcnow()
            expired = chunked_upload_service.expire_stale(db, now)
            deleted = db.query(UploadSession).filter(
                UploadSession.status.in_(TERMINAL_STATUSES),
                UploadSession.updated_at < now - self.retention,
            ).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        if expired or deleted:
            self.logger.info("Upload session cleanup: expired %d, deleted %d", expired, deleted)
        return expired + deleted
