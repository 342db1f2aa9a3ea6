"""Folder service — create, rename, move, trash and remove folders."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, func, literal, or_
from sqlalchemy.orm import Session

from trove.core.exceptions import ResourceConflictError, ResourceNotFoundError, ValidationError
from trove.db.base import utcnow
from trove.models.file import File
from trove.models.folder import Folder
from trove.models.user import User
from trove.services.paths import (
    folder_exists, is_same_or_descendant, join_path, sanitize_folder_name,
    sanitize_logical_path, subtree_pattern,
)

logger = logging.getLogger("trove")


def _folder_path(current_folder: str) -> str:
    path = sanitize_logical_path(current_folder)
    if not path:
        raise ValidationError("Invalid folder path")
    return path


def _path_taken(db: Session, user_id: int, path: str) -> bool:
    """A live explicit folder or any live file in or below ``path`` occupies it."""
    explicit = db.query(Folder.id).filter(
        Folder.user_id == user_id,
        Folder.folder_path == path,
        Folder.trashed_at.is_(None),
    ).first()
    if explicit:
        return True
    implicit = db.query(File.id).filter(
        File.user_id == user_id,
        File.trashed_at.is_(None),
        or_(File.logical_path == path, File.logical_path.like(subtree_pattern(path), escape="\\")),
    ).first()
    return implicit is not None


def _rebase(column, old_path: str, new_path: str):
    """SQL expression swapping the ``old_path`` prefix of ``column`` for ``new_path``."""
    return literal(new_path, String) + func.substr(column, len(old_path) + 1)


def rewrite_subtree(db: Session, user_id: int, old_path: str, new_path: str) -> None:
    """Re-home every live folder and file at or below ``old_path``. Does not commit."""
    pattern = subtree_pattern(old_path)
    db.query(Folder).filter(
        Folder.user_id == user_id,
        Folder.folder_path == old_path,
        Folder.trashed_at.is_(None),
    ).update({Folder.folder_path: new_path}, synchronize_session=False)
    db.query(Folder).filter(
        Folder.user_id == user_id,
        Folder.folder_path.like(pattern, escape="\\"),
        Folder.trashed_at.is_(None),
    ).update({Folder.folder_path: _rebase(Folder.folder_path, old_path, new_path)}, synchronize_session=False)
    db.query(File).filter(
        File.user_id == user_id,
        File.logical_path == old_path,
        File.trashed_at.is_(None),
    ).update({File.logical_path: new_path}, synchronize_session=False)
    db.query(File).filter(
        File.user_id == user_id,
        File.logical_path.like(pattern, escape="\\"),
        File.trashed_at.is_(None),
    ).update({File.logical_path: _rebase(File.logical_path, old_path, new_path)}, synchronize_session=False)


class FolderService:
    """Explicit folder rows and the subtree rewrites that keep files attached to them."""

    @staticmethod
    def get_live(db: Session, user: User, path: str) -> Optional[Folder]:
        return db.query(Folder).filter(
            Folder.user_id == user.id,
            Folder.folder_path == path,
            Folder.trashed_at.is_(None),
        ).first()

    @staticmethod
    def create(db: Session, user: User, current_folder: str, name: str) -> Folder:
        parent = _folder_path(current_folder)
        name = sanitize_folder_name(name)
        path = join_path(parent, name)
        if FolderService.get_live(db, user, path):
            raise ResourceConflictError("A folder with that name already exists.")
        folder = Folder(user_id=user.id, folder_path=path)
        db.add(folder)
        db.commit()
        db.refresh(folder)
        return folder

    @staticmethod
    def rename(db: Session, user: User, current_folder: str, old_name: str, new_name: str) -> bool:
        """Rename a folder in place. Returns False when the name is unchanged."""
        parent = _folder_path(current_folder)
        old_name = sanitize_folder_name(old_name)
        new_name = sanitize_folder_name(new_name)
        old_path = join_path(parent, old_name)
        new_path = join_path(parent, new_name)
        if old_path == new_path:
            return False
        if _path_taken(db, user.id, new_path):
            raise ResourceConflictError("A folder with that name already exists")
        if not FolderService.get_live(db, user, old_path):
            raise ResourceNotFoundError("Folder not found")

        try:
            rewrite_subtree(db, user.id, old_path, new_path)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Folder renamed: user_id=%d %s -> %s", user.id, old_path, new_path)
        return True

    @staticmethod
    def move(db: Session, user: User, current_folder: str, name: str, destination: str) -> bool:
        """Move a folder under ``destination``. Returns False when nothing moves."""
        parent = _folder_path(current_folder)
        name = sanitize_folder_name(name)
        destination = sanitize_logical_path(destination)
        if not destination:
            raise ValidationError("Invalid destination folder")
        source = join_path(parent, name)
        target = join_path(destination, name)
        if source == target:
            return False
        if is_same_or_descendant(destination, source):
            logger.info("Prevented circular folder move: user_id=%d %s -> %s", user.id, source, destination)
            raise ValidationError("Cannot move a folder into itself or its subfolder")
        if not FolderService.get_live(db, user, source):
            raise ResourceNotFoundError("Source folder not found")
        if not folder_exists(db, user.id, destination):
            raise ResourceNotFoundError("Destination folder does not exist")
        if _path_taken(db, user.id, target):
            raise ResourceConflictError("A folder with that name already exists in the destination")

        try:
            rewrite_subtree(db, user.id, source, target)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Folder moved: user_id=%d %s -> %s", user.id, source, target)
        return True

    @staticmethod
    def soft_delete(db: Session, user: User, current_folder: str, name: str, now: Optional[datetime] = None) -> Folder:
        """Trash a folder together with every live folder and file beneath it.

        All rows trashed here share one ``trash_batch_id``, so restoring or
        purging the folder later touches exactly this batch.
        """
        parent = _folder_path(current_folder)
        path = join_path(parent, sanitize_folder_name(name))
        folder = FolderService.get_live(db, user, path)
        if folder is None:
            raise ResourceNotFoundError("Folder not found.")

        now = now or utcnow()
        batch = str(uuid.uuid4())
        pattern = subtree_pattern(path)
        try:
            folder.trashed_at = now
            folder.original_folder_path = path
            folder.trash_batch_id = batch
            db.query(Folder).filter(
                Folder.user_id == user.id,
                Folder.folder_path.like(pattern, escape="\\"),
                Folder.trashed_at.is_(None),
            ).update(
                {
                    Folder.trashed_at: now,
                    Folder.original_folder_path: Folder.folder_path,
                    Folder.trash_batch_id: batch,
                },
                synchronize_session=False,
            )
            db.query(File).filter(
                File.user_id == user.id,
                File.trashed_at.is_(None),
                or_(File.logical_path == path, File.logical_path.like(pattern, escape="\\")),
            ).update(
                {
                    File.trashed_at: now,
                    File.original_logical_path: File.logical_path,
                    File.trash_batch_id: batch,
                },
                synchronize_session=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return folder

    @staticmethod
    def remove_empty(db: Session, user: User, current_folder: str, name: str) -> None:
        """Hard-delete an explicit folder row that holds nothing live."""
        parent = _folder_path(current_folder)
        path = join_path(parent, sanitize_folder_name(name))
        folder = FolderService.get_live(db, user, path)
        if folder is None:
            raise ResourceNotFoundError("Folder not found.")

        pattern = subtree_pattern(path)
        has_files = db.query(File.id).filter(
            File.user_id == user.id,
            File.trashed_at.is_(None),
            or_(File.logical_path == path, File.logical_path.like(pattern, escape="\\")),
        ).first()
        has_subfolders = db.query(Folder.id).filter(
            Folder.user_id == user.id,
            Folder.trashed_at.is_(None),
            Folder.folder_path.like(pattern, escape="\\"),
        ).first()
        if has_files or has_subfolders:
            raise ResourceConflictError("Folder is not empty")
        db.delete(folder)
        db.commit()


folder_service = FolderService()
