"""Trash API router — list, restore, permanently delete, empty."""

import posixpath

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from trove.core.exceptions import TroveError
from trove.core.flash import redirect_with_flash
from trove.core.security import get_current_user
from trove.db.session import get_db
from trove.models.user import User
from trove.schemas.schemas import TrashListing
from trove.services.trash_service import trash_service

router = APIRouter(prefix="/deleted", tags=["trash"])

TRASH_URL = "/deleted"


@router.get("", response_model=TrashListing)
async def list_deleted(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Trashed files and folders with time left before purge."""
    return trash_service.list_trash(db, user)


@router.post("/files/{file_id}/restore")
async def restore_file(file_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        file = trash_service.restore_file(db, user, file_id)
    except TroveError as e:
        return redirect_with_flash(TRASH_URL, "error", e.message)
    return redirect_with_flash(TRASH_URL, "success", f'File "{file.filename}" restored to {file.logical_path}')


@router.post("/files/{file_id}/delete")
async def delete_file_forever(file_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        file = trash_service.delete_file(db, user, file_id)
    except TroveError as e:
        return redirect_with_flash(TRASH_URL, "error", e.message)
    return redirect_with_flash(TRASH_URL, "success", f'File "{file.filename}" permanently deleted')


@router.post("/folders/{folder_id}/restore")
async def restore_folder(folder_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        folder = trash_service.restore_folder(db, user, folder_id)
    except TroveError as e:
        return redirect_with_flash(TRASH_URL, "error", e.message)
    name = posixpath.basename(folder.folder_path)
    return redirect_with_flash(TRASH_URL, "success", f'Folder "{name}" restored')


@router.post("/folders/{folder_id}/delete")
async def delete_folder_forever(folder_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        path = trash_service.delete_folder(db, user, folder_id)
    except TroveError as e:
        return redirect_with_flash(TRASH_URL, "error", e.message)
    return redirect_with_flash(TRASH_URL, "success", f'Folder "{posixpath.basename(path)}" permanently deleted')


@router.post("/empty")
async def empty_trash(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    count = trash_service.empty(db, user)
    return redirect_with_flash(TRASH_URL, "success", f"All deleted items permanently removed: {count} files")
