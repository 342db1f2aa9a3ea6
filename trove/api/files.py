"""Files API router — streaming upload, listing, download, status, rename, move, delete, dismiss."""

import logging
from typing import List
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from trove.core.exceptions import ResourceNotFoundError, TroveError
from trove.core.flash import folder_url, redirect_with_flash
from trove.core.security import get_current_user
from trove.db.session import get_db
from trove.models.file import File
from trove.models.user import User
from trove.schemas.schemas import FileOut, FileStatusEvent, FolderListing
from trove.services.file_service import file_service
from trove.services.upload_service import upload_service
from trove.services.upload_worker import remove_temp
from trove.storage.base import COPY_BUFFER_SIZE

logger = logging.getLogger("trove")

router = APIRouter(tags=["files"])


def _current_folder(db: Session, user: User, file_id: int) -> str:
    file = db.query(File).filter(File.id == file_id, File.user_id == user.id).first()
    return file.logical_path if file else "/"


def _content_disposition(kind: str, filename: str) -> str:
    safe = filename.replace("\\", "\\\\").replace('"', '\\"')
    return f"{kind}; filename=\"{safe}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _iter_stream(stream):
    try:
        while True:
            block = stream.read(COPY_BUFFER_SIZE)
            if not block:
                break
            yield block
    finally:
        stream.close()


@router.post("/upload")
async def upload_file(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Stream a single-file multipart upload into the background pipeline."""
    staged = await upload_service.stage(request)
    try:
        outcome = upload_service.commit(db, user, staged)
    except Exception:
        remove_temp(staged.temp_path)
        raise
    return redirect_with_flash(folder_url(outcome.folder), "success", outcome.message)


@router.get("/files", response_model=FolderListing)
async def list_files(
    folder: str = Query("/"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List files and immediate subfolders of a folder."""
    listing = file_service.list_folder(db, user, folder)
    return FolderListing(
        folder=listing["folder"],
        folders=listing["folders"],
        files=[FileOut.model_validate(f) for f in listing["files"]],
    )


@router.get("/files/status", response_model=List[FileStatusEvent])
async def upload_status(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Current state of in-flight, failed and just-completed uploads."""
    return file_service.upload_statuses(db, user)


@router.get("/files/{file_id}/download")
async def download_file(
    file_id: int,
    inline: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Stream the file content, as an attachment or inline preview."""
    file, stream = file_service.open_for_download(db, user, file_id)
    headers = {
        "Content-Disposition": _content_disposition("inline" if inline else "attachment", file.filename),
        "Content-Length": str(file.file_size),
    }
    if inline:
        headers["X-Content-Type-Options"] = "nosniff"
    return StreamingResponse(
        _iter_stream(stream),
        media_type=file.mime_type or "application/octet-stream",
        headers=headers,
    )


@router.post("/files/{file_id}/rename")
async def rename_file(
    file_id: int,
    new_name: str = Form(""),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        file, changed = file_service.rename(db, user, file_id, new_name)
    except TroveError as e:
        return redirect_with_flash(folder_url(_current_folder(db, user, file_id)), "error", e.message)
    message = f"File renamed to {file.filename}" if changed else "File name unchanged"
    return redirect_with_flash(folder_url(file.logical_path), "success", message)


@router.post("/files/{file_id}/move")
async def move_file(
    file_id: int,
    destination_folder: str = Form("/"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        file, _, changed = file_service.move(db, user, file_id, destination_folder)
    except TroveError as e:
        return redirect_with_flash(folder_url(_current_folder(db, user, file_id)), "error", e.message)
    message = f"File moved to {file.logical_path}" if changed else "File is already in this folder"
    return redirect_with_flash(folder_url(file.logical_path), "success", message)


@router.post("/files/{file_id}/delete")
async def delete_file(
    file_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Move a file to the trash."""
    try:
        file = file_service.soft_delete(db, user, file_id)
    except TroveError as e:
        return redirect_with_flash("/files", "error", e.message)
    return redirect_with_flash(folder_url(file.original_logical_path), "success", "File deleted.")


@router.post("/files/{file_id}/dismiss")
async def dismiss_failed_upload(
    file_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Remove a failed upload and give its size back to the quota."""
    if not file_service.dismiss(db, user, file_id):
        raise ResourceNotFoundError("File not found")
    return {"success": True}
