"""Folders API router — create, rename, move, trash and remove."""

from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session

from trove.core.exceptions import TroveError
from trove.core.flash import folder_url, redirect_with_flash
from trove.core.security import get_current_user
from trove.db.session import get_db
from trove.models.user import User
from trove.services.folder_service import folder_service
from trove.services.paths import sanitize_logical_path

router = APIRouter(prefix="/folders", tags=["folders"])


def _back(current_folder: str) -> str:
    return folder_url(sanitize_logical_path(current_folder) or "/")


@router.post("/create")
async def create_folder(
    current_folder: str = Form("/"),
    folder_name: str = Form(""),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        folder = folder_service.create(db, user, current_folder, folder_name)
    except TroveError as e:
        return redirect_with_flash(_back(current_folder), "error", e.message)
    return redirect_with_flash(folder_url(folder.folder_path), "success", "Folder created successfully.")


@router.post("/rename")
async def rename_folder(
    current_folder: str = Form("/"),
    old_name: str = Form(""),
    new_name: str = Form(""),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        changed = folder_service.rename(db, user, current_folder, old_name, new_name)
    except TroveError as e:
        return redirect_with_flash(_back(current_folder), "error", e.message)
    message = f"Folder renamed to {new_name.strip()}" if changed else "Folder name unchanged"
    return redirect_with_flash(_back(current_folder), "success", message)


@router.post("/move")
async def move_folder(
    current_folder: str = Form("/"),
    folder_name: str = Form(""),
    destination_folder: str = Form("/"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        moved = folder_service.move(db, user, current_folder, folder_name, destination_folder)
    except TroveError as e:
        return redirect_with_flash(_back(current_folder), "error", e.message)
    if not moved:
        return redirect_with_flash(_back(current_folder), "info", "Folder is already there")
    destination = sanitize_logical_path(destination_folder)
    return redirect_with_flash(folder_url(destination), "success", f"Folder moved to {destination}")


@router.post("/delete/{name}")
async def delete_folder(
    name: str,
    current_folder: str = Form("/"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Move a folder and its contents to the trash."""
    try:
        folder_service.soft_delete(db, user, current_folder, name)
    except TroveError as e:
        return redirect_with_flash(_back(current_folder), "error", e.message)
    return redirect_with_flash(_back(current_folder), "success", "Folder deleted.")


@router.post("/remove/{name}")
async def remove_folder(
    name: str,
    current_folder: str = Form("/"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Delete an empty folder outright."""
    try:
        folder_service.remove_empty(db, user, current_folder, name)
    except TroveError as e:
        return redirect_with_flash(_back(current_folder), "error", e.message)
    return redirect_with_flash(_back(current_folder), "success", "Folder removed.")
