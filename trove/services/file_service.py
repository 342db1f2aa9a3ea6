"""File service — listing, download, rename, move, soft-delete and failed-upload dismissal."""

import logging
from datetime import timedelta
from typing import Any, BinaryIO, Dict, List, Tuple

from sqlalchemy.orm import Session

from trove.core.exceptions import ResourceConflictError, ResourceNotFoundError, ValidationError
from trove.db.base import utcnow
from trove.models.file import File, UPLOAD_COMPLETED, UPLOAD_FAILED, UPLOAD_PENDING, UPLOAD_UPLOADING
from trove.models.folder import Folder
from trove.models.user import User
from trove.services.paths import (
    folder_exists, filename_taken, sanitize_logical_path, subtree_pattern, validate_filename,
)
from trove.services.quota import quota_service
from trove.storage.factory import get_storage

logger = logging.getLogger("trove")

RECENTLY_COMPLETED_WINDOW = timedelta(seconds=5)
STALE_PENDING_AFTER = timedelta(hours=1)

# Failure messages shown verbatim to the owner; anything else may leak backend details.
SAFE_ERROR_PREFIXES = (
    "Upload queue is full. Please try again later.",
    "Storage quota exceeded",
    "File too large",
    "Invalid file type",
    "File name too long",
)
GENERIC_UPLOAD_ERROR = "Upload failed. Check server logs for details."


def public_error_message(message: str) -> str:
    if not message:
        return ""
    if message.startswith(SAFE_ERROR_PREFIXES):
        return message
    return GENERIC_UPLOAD_ERROR


class FileService:
    """Operations on live (non-trashed) files in a user's namespace."""

    @staticmethod
    def get_file(db: Session, user: User, file_id: int) -> File:
        file = db.query(File).filter(
            File.id == file_id,
            File.user_id == user.id,
            File.trashed_at.is_(None),
        ).first()
        if not file:
            raise ResourceNotFoundError("File not found")
        return file

    @staticmethod
    def list_folder(db: Session, user: User, folder: str) -> Dict[str, Any]:
        """Files directly in ``folder`` plus its immediate subfolders, explicit or implicit."""
        path = sanitize_logical_path(folder)
        if not path:
            raise ValidationError("Invalid folder path")

        files = (
            db.query(File)
            .filter(File.user_id == user.id, File.logical_path == path, File.trashed_at.is_(None))
            .order_by(File.filename)
            .all()
        )

        prefix = "/" if path == "/" else path + "/"
        pattern = "/%" if path == "/" else subtree_pattern(path)
        below: set[str] = set()
        explicit = db.query(Folder.folder_path).filter(
            Folder.user_id == user.id,
            Folder.trashed_at.is_(None),
            Folder.folder_path.like(pattern, escape="\\"),
        ).all()
        implicit = db.query(File.logical_path).filter(
            File.user_id == user.id,
            File.trashed_at.is_(None),
            File.logical_path.like(pattern, escape="\\"),
        ).distinct().all()
        for (candidate,) in explicit + implicit:
            rest = candidate[len(prefix):]
            if rest:
                below.add(rest.split("/", 1)[0])

        return {
            "folder": path,
            "folders": sorted(below),
            "files": files,
        }

    @staticmethod
    def open_for_download(db: Session, user: User, file_id: int) -> Tuple[File, BinaryIO]:
        """Resolve the row and open its object. StorageNotFoundError surfaces as 404."""
        file = FileService.get_file(db, user, file_id)
        if file.upload_status != UPLOAD_COMPLETED:
            raise ResourceNotFoundError("File is not available yet")
        storage = get_storage()
        storage.stat(file.storage_path)
        return file, storage.open(file.storage_path)

    @staticmethod
    def rename(db: Session, user: User, file_id: int, new_name: str) -> Tuple[File, bool]:
        """Rename a file in place. Returns (file, changed)."""
        new_name = validate_filename(new_name)
        file = FileService.get_file(db, user, file_id)
        if file.filename == new_name:
            return file, False
        if filename_taken(db, user.id, file.logical_path, new_name, exclude_id=file.id):
            raise ResourceConflictError("A file with that name already exists in this folder")
        file.filename = new_name
        db.commit()
        return file, True

    @staticmethod
    def move(db: Session, user: User, file_id: int, destination: str) -> Tuple[File, str, bool]:
        """Move a file to another folder. Returns (file, original_folder, changed)."""
        destination = sanitize_logical_path(destination)
        if not destination:
            raise ValidationError("Invalid destination folder")
        file = FileService.get_file(db, user, file_id)
        original = file.logical_path
        if original == destination:
            return file, original, False
        if not folder_exists(db, user.id, destination):
            raise ResourceNotFoundError("Destination folder does not exist")
        if filename_taken(db, user.id, destination, file.filename, exclude_id=file.id):
            raise ResourceConflictError("A file with the same name already exists in the destination folder")
        file.logical_path = destination
        db.commit()
        return file, original, True

    @staticmethod
    def soft_delete(db: Session, user: User, file_id: int) -> File:
        """Move a file to trash. No storage or quota change."""
        file = FileService.get_file(db, user, file_id)
        file.original_logical_path = file.logical_path
        file.trashed_at = utcnow()
        file.trash_batch_id = None
        db.commit()
        return file

    @staticmethod
    def dismiss(db: Session, user: User, file_id: int) -> bool:
        """Drop a failed (or stale pending) upload and give back its quota.

        Safe to repeat: the guarded delete only debits when it removed a row.
        """
        file = db.query(File).filter(File.id == file_id, File.user_id == user.id).first()
        if file is None:
            return False
        stale_before = utcnow() - STALE_PENDING_AFTER
        dismissable = file.upload_status == UPLOAD_FAILED or (
            file.upload_status == UPLOAD_PENDING and file.updated_at < stale_before
        )
        if not dismissable:
            raise ValidationError("Can only dismiss failed uploads")

        size = file.file_size
        removed = db.query(File).filter(
            File.id == file.id,
            File.upload_status.in_([UPLOAD_PENDING, UPLOAD_FAILED]),
        ).delete(synchronize_session=False)
        if removed:
            quota_service.debit(db, user.id, size)
        db.commit()
        if removed:
            logger.info("Dismissed failed upload %d, restored %d bytes to user %d", file_id, size, user.id)
        return bool(removed)

    @staticmethod
    def upload_statuses(db: Session, user: User) -> List[Dict[str, Any]]:
        """Snapshot of in-flight, failed and just-completed uploads for the status poller."""
        in_flight = db.query(File).filter(
            File.user_id == user.id,
            File.upload_status.in_([UPLOAD_PENDING, UPLOAD_UPLOADING, UPLOAD_FAILED]),
        ).all()
        recent = db.query(File).filter(
            File.user_id == user.id,
            File.upload_status == UPLOAD_COMPLETED,
            File.updated_at > utcnow() - RECENTLY_COMPLETED_WINDOW,
        ).all()
        events = []
        for file in in_flight + recent:
            error = public_error_message(file.error_message) if file.upload_status == UPLOAD_FAILED else ""
            events.append({
                "id": file.id,
                "upload_status": file.upload_status,
                "error_message": error,
                "filename": file.original_filename,
            })
        return events


file_service = FileService()
