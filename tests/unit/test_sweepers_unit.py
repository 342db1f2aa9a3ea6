"""Unit tests for the retention and upload-session sweepers."""

import os
from datetime import timedelta

from trove.db.base import utcnow
from trove.models.file import File
from trove.models.folder import Folder
from trove.models.upload_session import UploadSession, SESSION_ACTIVE, SESSION_CANCELLED, SESSION_EXPIRED
from trove.services.sweepers import RetentionSweeper, SessionSweeper, Sweeper


def _session(user_id, upload_id, status, temp_dir=None, expires_in=timedelta(hours=1), updated_at=None):
    now = utcnow()
    return UploadSession(
        id=upload_id,
        user_id=user_id,
        filename="big.iso",
        logical_path="/",
        total_size=10,
        total_chunks=1,
        chunk_size=10,
        status=status,
        temp_dir=temp_dir,
        expires_at=now + expires_in,
        updated_at=updated_at or now,
    )


def test_interval_has_one_minute_floor():
    sweeper = RetentionSweeper(interval=timedelta(seconds=5))
    assert sweeper.interval == timedelta(minutes=1)


def test_retention_sweeper_skips_startup_run_in_test_mode():
    assert RetentionSweeper().run_on_start is False


def test_retention_sweeper_purges_expired_trash(db, make_user, add_file, storage):
    user, _ = make_user()
    user.deleted_retention_days = 2
    db.commit()

    old = add_file(user, "old.txt", b"old content")
    recent = add_file(user, "recent.txt", b"recent")
    live = add_file(user, "live.txt", b"live")
    now = utcnow()
    old.trashed_at, old.original_logical_path = now - timedelta(days=3), "/"
    recent.trashed_at, recent.original_logical_path = now - timedelta(hours=1), "/"
    db.add(Folder(user_id=user.id, folder_path="/gone", original_folder_path="/gone", trashed_at=now - timedelta(days=5)))
    db.commit()
    old_path = old.storage_path

    assert RetentionSweeper().run_once() == 1

    db.expire_all()
    remaining = {f.filename for f in db.query(File).filter(File.user_id == user.id)}
    assert remaining == {"recent.txt", "live.txt"}
    assert db.query(Folder).filter(Folder.user_id == user.id).count() == 0
    db.refresh(user)
    assert user.storage_used == len(b"recent") + len(b"live")
    assert storage.file_count() == 2
    assert old_path not in {recent.storage_path, live.storage_path}


def test_retention_sweeper_honors_disabled_retention(db, make_user, add_file):
    user, _ = make_user()
    user.deleted_retention_days = 0
    file = add_file(user, "keep.txt")
    file.trashed_at = utcnow() - timedelta(days=365)
    db.commit()

    assert RetentionSweeper().run_once() == 0


def test_session_sweeper_expires_and_drops_rows(db, make_user, tmp_path):
    user, _ = make_user()
    stale_dir = tmp_path / "stale"
    stale_dir.mkdir()
    (stale_dir / "chunk_0").write_bytes(b"x")
    db.add_all([
        _session(user.id, "stale", SESSION_ACTIVE, str(stale_dir), expires_in=-timedelta(minutes=1)),
        _session(user.id, "fresh", SESSION_ACTIVE),
        _session(user.id, "ancient", SESSION_CANCELLED, updated_at=utcnow() - timedelta(days=30)),
    ])
    db.commit()

    assert SessionSweeper(retention_days=7).run_once() == 2

    db.expire_all()
    statuses = {s.id: s.status for s in db.query(UploadSession)}
    assert statuses == {"stale": SESSION_EXPIRED, "fresh": SESSION_ACTIVE}
    assert not os.path.exists(stale_dir)


def test_sweeper_thread_start_and_stop():
    calls = []

    class Counting(Sweeper):
        name = "counting"

        def run_once(self):
            calls.append(1)
            return 0

    sweeper = Counting(interval=timedelta(minutes=1))
    sweeper.start()
    sweeper.stop()
    assert calls == [1]
