"""Trash service — listing, restore, permanent delete and retention purge.

Permanent deletion follows the reference-counting rule: the storage object is
removed (and quota debited) only when no other row of the same user still
points at its storage path.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import false, func, or_
from sqlalchemy.orm import Session

from trove.core.config import settings
from trove.core.exceptions import ResourceConflictError, ResourceNotFoundError, StorageError, ValidationError
from trove.core.metrics import FILES_PURGED
from trove.db.base import utcnow
from trove.models.file import File
from trove.models.folder import Folder
from trove.models.user import User
from trove.services.paths import filename_taken, folder_exists, subtree_pattern
from trove.services.quota import quota_service
from trove.storage.factory import get_storage

logger = logging.getLogger("trove")


def retention_days(user: User) -> int:
    if user.deleted_retention_days is not None:
        return user.deleted_retention_days
    return settings.DELETED_RETENTION_DAYS


def describe_expiry(trashed_at: Optional[datetime], days: int, now: Optional[datetime] = None) -> str:
    """Human-readable time left before the retention sweeper purges an item."""
    if trashed_at is None or days <= 0:
        return ""
    remaining = trashed_at + timedelta(days=days) - (now or utcnow())
    if remaining > timedelta(days=1):
        return f"{remaining.days} days"
    if remaining > timedelta(hours=1):
        return f"{int(remaining.total_seconds() // 3600)} hours"
    if remaining > timedelta(0):
        return "< 1 hour"
    return "expired"


def _in_batch(model, batch: Optional[str]):
    """Rows trashed by the same folder delete; a folder without a batch cascades to nothing."""
    if not batch:
        return false()
    return model.trash_batch_id == batch


def reclaim_storage(paths: List[str]) -> None:
    """Delete unreferenced objects after the owning transaction committed."""
    if not paths:
        return
    storage = get_storage()
    for path in paths:
        try:
            storage.delete(path)
        except StorageError as e:
            logger.error("Failed to delete storage object %s: %s", path, e.message)


class TrashService:
    """Soft-deleted files and folders."""

    @staticmethod
    def purge_file(db: Session, file: File) -> Optional[str]:
        """Delete a file row; return its storage path if that was the last reference.

        Debits quota for the last reference. Does not commit and does not touch
        storage; pass the returned paths to ``reclaim_storage`` after commit.
        """
        user_id, path, size = file.user_id, file.storage_path, file.file_size
        db.delete(file)
        db.flush()
        still_referenced = db.query(File.id).filter(
            File.user_id == user_id,
            File.storage_path == path,
        ).first()
        if still_referenced is not None:
            logger.info("Storage object %s still referenced, keeping it", path)
            return None
        quota_service.debit(db, user_id, size)
        return path

    @staticmethod
    def _trashed_file(db: Session, user: User, file_id: int) -> File:
        file = db.query(File).filter(
            File.id == file_id,
            File.user_id == user.id,
            File.trashed_at.isnot(None),
        ).first()
        if file is None:
            raise ResourceNotFoundError("File not found in deleted items")
        return file

    @staticmethod
    def _trashed_folder(db: Session, user: User, folder_id: int) -> Folder:
        folder = db.query(Folder).filter(
            Folder.id == folder_id,
            Folder.user_id == user.id,
            Folder.trashed_at.isnot(None),
        ).first()
        if folder is None:
            raise ResourceNotFoundError("Folder not found in deleted items")
        return folder

    @staticmethod
    def list_trash(db: Session, user: User) -> Dict[str, Any]:
        days = retention_days(user)
        now = utcnow()
        files = (
            db.query(File)
            .filter(File.user_id == user.id, File.trashed_at.isnot(None))
            .order_by(File.trashed_at.desc())
            .all()
        )
        folders = (
            db.query(Folder)
            .filter(Folder.user_id == user.id, Folder.trashed_at.isnot(None))
            .order_by(Folder.trashed_at.desc())
            .all()
        )
        return {
            "retention_days": days,
            "total_size": sum(f.file_size for f in files),
            "files": [
                {
                    "id": f.id,
                    "filename": f.filename,
                    "original_path": f.original_logical_path or f.logical_path,
                    "file_size": f.file_size,
                    "trashed_at": f.trashed_at,
                    "expires_in": describe_expiry(f.trashed_at, days, now),
                }
                for f in files
            ],
            "folders": [
                {
                    "id": d.id,
                    "folder_path": d.original_folder_path or d.folder_path,
                    "trashed_at": d.trashed_at,
                    "expires_in": describe_expiry(d.trashed_at, days, now),
                }
                for d in folders
            ],
        }

    @staticmethod
    def restore_file(db: Session, user: User, file_id: int) -> File:
        """Put a file back where it was, or at the root if that folder is gone."""
        file = TrashService._trashed_file(db, user, file_id)
        target = file.original_logical_path or file.logical_path or "/"
        if not folder_exists(db, user.id, target):
            target = "/"
        if filename_taken(db, user.id, target, file.filename, exclude_id=file.id):
            raise ResourceConflictError("A file with the same name already exists in the destination folder")
        file.logical_path = target
        file.trashed_at = None
        file.original_logical_path = None
        file.trash_batch_id = None
        db.commit()
        db.refresh(file)
        return file

    @staticmethod
    def restore_folder(db: Session, user: User, folder_id: int) -> Folder:
        """Restore a folder and the rows that were trashed together with it."""
        folder = TrashService._trashed_folder(db, user, folder_id)
        original = folder.original_folder_path or folder.folder_path
        if not original:
            raise ValidationError("Cannot restore folder: original path unknown")
        live = db.query(Folder.id).filter(
            Folder.user_id == user.id,
            Folder.folder_path == original,
            Folder.trashed_at.is_(None),
        ).first()
        if live is not None:
            raise ResourceConflictError("A folder with the same name already exists at the original location")

        pattern = subtree_pattern(original)
        folder_origin = func.coalesce(Folder.original_folder_path, Folder.folder_path)
        file_origin = func.coalesce(File.original_logical_path, File.logical_path)
        batch = folder.trash_batch_id
        try:
            folder.folder_path = original
            folder.trashed_at = None
            folder.original_folder_path = None
            folder.trash_batch_id = None
            db.query(Folder).filter(
                Folder.user_id == user.id,
                Folder.id != folder.id,
                Folder.trashed_at.isnot(None),
                _in_batch(Folder, batch),
                folder_origin.like(pattern, escape="\\"),
            ).update(
                {
                    Folder.folder_path: folder_origin,
                    Folder.trashed_at: None,
                    Folder.original_folder_path: None,
                    Folder.trash_batch_id: None,
                },
                synchronize_session=False,
            )
            db.query(File).filter(
                File.user_id == user.id,
                File.trashed_at.isnot(None),
                _in_batch(File, batch),
                or_(file_origin == original, file_origin.like(pattern, escape="\\")),
            ).update(
                {
                    File.logical_path: file_origin,
                    File.trashed_at: None,
                    File.original_logical_path: None,
                    File.trash_batch_id: None,
                },
                synchronize_session=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(folder)
        return folder

    @staticmethod
    def delete_file(db: Session, user: User, file_id: int) -> File:
        file = TrashService._trashed_file(db, user, file_id)
        try:
            reclaimable = TrashService.purge_file(db, file)
            db.commit()
        except Exception:
            db.rollback()
            raise
        FILES_PURGED.inc()
        reclaim_storage([reclaimable] if reclaimable else [])
        return file

    @staticmethod
    def delete_folder(db: Session, user: User, folder_id: int) -> str:
        """Permanently delete a trashed folder and its trashed contents. Returns its path."""
        folder = TrashService._trashed_folder(db, user, folder_id)
        path = folder.original_folder_path or folder.folder_path
        pattern = subtree_pattern(path)
        file_origin = func.coalesce(File.original_logical_path, File.logical_path)
        folder_origin = func.coalesce(Folder.original_folder_path, Folder.folder_path)
        batch = folder.trash_batch_id

        reclaimable: List[str] = []
        try:
            files = db.query(File).filter(
                File.user_id == user.id,
                File.trashed_at.isnot(None),
                _in_batch(File, batch),
                or_(file_origin == path, file_origin.like(pattern, escape="\\")),
            ).all()
            for file in files:
                storage_path = TrashService.purge_file(db, file)
                if storage_path:
                    reclaimable.append(storage_path)
            db.query(Folder).filter(
                Folder.user_id == user.id,
                Folder.id != folder.id,
                Folder.trashed_at.isnot(None),
                _in_batch(Folder, batch),
                folder_origin.like(pattern, escape="\\"),
            ).delete(synchronize_session=False)
            db.delete(folder)
            db.commit()
        except Exception:
            db.rollback()
            raise
        FILES_PURGED.inc(len(files))
        reclaim_storage(reclaimable)
        return path

    @staticmethod
    def empty(db: Session, user: Optional[User] = None) -> int:
        """Permanently delete all trashed items, for one user or everybody. Returns files removed."""
        files_query = db.query(File).filter(File.trashed_at.isnot(None))
        folders_query = db.query(Folder).filter(Folder.trashed_at.isnot(None))
        if user is not None:
            files_query = files_query.filter(File.user_id == user.id)
            folders_query = folders_query.filter(Folder.user_id == user.id)

        reclaimable: List[str] = []
        try:
            files = files_query.all()
            for file in files:
                storage_path = TrashService.purge_file(db, file)
                if storage_path:
                    reclaimable.append(storage_path)
            folders_query.delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        FILES_PURGED.inc(len(files))
        reclaim_storage(reclaimable)
        return len(files)

    @staticmethod
    def purge_expired(db: Session, user: User, now: Optional[datetime] = None) -> int:
        """Permanently delete one user's trash older than their retention. Returns files removed."""
        days = retention_days(user)
        if days <= 0:
            return 0
        cutoff = (now or utcnow()) - timedelta(days=days)

        reclaimable: List[str] = []
        removed = 0
        expired = db.query(File).filter(
            File.user_id == user.id,
            File.trashed_at.isnot(None),
            File.trashed_at < cutoff,
        ).all()
        for file in expired:
            file_id = file.id
            try:
                storage_path = TrashService.purge_file(db, file)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("Retention cleanup failed for file %d", file_id)
                continue
            removed += 1
            FILES_PURGED.inc()
            if storage_path:
                reclaimable.append(storage_path)

        try:
            db.query(Folder).filter(
                Folder.user_id == user.id,
                Folder.trashed_at.isnot(None),
                Folder.trashed_at < cutoff,
            ).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Retention cleanup failed for folders of user %d", user.id)

        reclaim_storage(reclaimable)
        return removed


trash_service = TrashService()
