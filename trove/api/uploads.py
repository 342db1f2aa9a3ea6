"""Chunked upload API router — resumable session protocol."""

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from trove.core.security import get_current_user
from trove.db.session import get_db
from trove.models.user import User
from trove.schemas.schemas import (
    ChunkProgress, CompleteUploadResponse, InitUploadRequest, InitUploadResponse, UploadStatusResponse,
)
from trove.services.chunked_upload_service import chunked_upload_service

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("/init", response_model=InitUploadResponse)
async def init_upload(
    body: InitUploadRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Open an upload session."""
    session = chunked_upload_service.init(
        db, user,
        filename=body.filename,
        total_size=body.total_size,
        chunk_size=body.chunk_size,
        total_chunks=body.total_chunks,
        logical_path=body.logical_path,
        mime_type=body.mime_type,
        hash=body.hash,
    )
    return InitUploadResponse(upload_id=session.id, chunks_received=[])


@router.post("/{upload_id}/chunk", response_model=ChunkProgress)
async def upload_chunk(
    upload_id: str,
    request: Request,
    chunk: int = Query(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Store one chunk; the raw request body is the chunk content."""
    return await chunked_upload_service.put_chunk(db, user, upload_id, chunk, request.stream())


@router.post("/{upload_id}/complete", response_model=CompleteUploadResponse)
async def complete_upload(
    upload_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Assemble the chunks into a stored file, off the event loop."""
    file = await run_in_threadpool(chunked_upload_service.complete, db, user, upload_id)
    return CompleteUploadResponse(file_id=file.id, filename=file.filename, size=file.file_size, hash=file.hash)


@router.delete("/{upload_id}", status_code=204)
async def cancel_upload(
    upload_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    chunked_upload_service.cancel(db, user, upload_id)
    return Response(status_code=204)


@router.get("/{upload_id}/status", response_model=UploadStatusResponse)
async def upload_status(
    upload_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return chunked_upload_service.status(db, user, upload_id)
