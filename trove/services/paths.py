"""Logical path and display-name helpers shared by the file, folder and upload services."""

import os
import uuid

from sqlalchemy import or_
from sqlalchemy.orm import Session

from trove.core.exceptions import ValidationError
from trove.models.file import File
from trove.models.folder import Folder

MAX_NAME_BYTES = 255
MAX_COLLISION_ATTEMPTS = 10000


def sanitize_logical_path(path: str) -> str:
    """Normalize a user-supplied folder path to "/" or "/seg(/seg)*".

    Cleaning is purely lexical. Returns "" when the path escapes the root or
    contains a null byte; callers treat that as a bad request.
    """
    if path is None:
        return "/"
    text = path.strip().replace("\\", "/")
    if not text:
        return "/"
    if "\x00" in text or text.startswith("../"):
        return ""

    parts: list[str] = []
    for segment in text.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                return ""
            parts.pop()
            continue
        parts.append(segment)
    return "/" + "/".join(parts)


def sanitize_folder_name(name: str) -> str:
    """Validate a single folder name and return it trimmed.

    Raises:
        ValidationError: If the name is empty, too long or contains path syntax.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Folder name is required")
    if "/" in name or "\\" in name or ".." in name or "\x00" in name:
        raise ValidationError("Invalid folder name")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise ValidationError("Folder name is too long (max 255 characters)")
    return name


def validate_filename(name: str) -> str:
    """Validate a display filename chosen by the user and return it trimmed."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("New name is required")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise ValidationError("File name is too long (max 255 characters)")
    if "/" in name or "\\" in name or ".." in name or "\x00" in name:
        raise ValidationError("Invalid file name")
    return name


def escape_like(value: str) -> str:
    """Escape LIKE wildcards; pair the pattern with escape="\\"."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def join_path(parent: str, name: str) -> str:
    if parent == "/":
        return "/" + name
    return parent + "/" + name


def parent_of(path: str) -> str:
    parent = path.rsplit("/", 1)[0]
    return parent or "/"


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    """True when path is ancestor itself or lies below it on a segment boundary."""
    if ancestor == "/":
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def subtree_pattern(path: str) -> str:
    """LIKE pattern matching every path strictly below ``path``."""
    return escape_like(path) + "/%"


def folder_exists(db: Session, user_id: int, path: str) -> bool:
    """A folder exists if it has a live row or any live file sits in or below it."""
    if path == "/":
        return True
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
        or_(
            File.logical_path == path,
            File.logical_path.like(subtree_pattern(path), escape="\\"),
        ),
    ).first()
    return implicit is not None


def filename_taken(db: Session, user_id: int, logical_path: str, filename: str, exclude_id=None) -> bool:
    query = db.query(File.id).filter(
        File.user_id == user_id,
        File.logical_path == logical_path,
        File.filename == filename,
        File.trashed_at.is_(None),
    )
    if exclude_id is not None:
        query = query.filter(File.id != exclude_id)
    return query.first() is not None


def unique_display_filename(db: Session, user_id: int, logical_path: str, desired: str) -> str:
    """Return ``desired`` or the first free "name (n).ext" variant in the folder."""
    if not filename_taken(db, user_id, logical_path, desired):
        return desired

    stem, ext = os.path.splitext(desired)
    for n in range(1, MAX_COLLISION_ATTEMPTS + 1):
        candidate = f"{stem} ({n}){ext}"
        if not filename_taken(db, user_id, logical_path, candidate):
            return candidate

    return f"{stem} ({uuid.uuid4().hex[:8]}){ext}"
