"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


# ---- Auth ----
class RegisterRequest(BaseModel):
    username: str = ""
    email: str = ""
    password: str = ""

class LoginRequest(BaseModel):
    username: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"

class ChangePasswordRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""
    confirm_password: str = ""


# ---- User ----
class UserOut(BaseModel):
    id: int
    username: str
    email: str
    is_admin: bool = False
    storage_quota: int
    storage_used: int
    deleted_retention_days: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- File ----
class FileOut(BaseModel):
    id: int
    filename: str
    original_filename: str
    logical_path: str
    file_size: int
    mime_type: Optional[str] = None
    hash: Optional[str] = None
    upload_status: str
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class FolderListing(BaseModel):
    folder: str
    folders: List[str]
    files: List[FileOut]

class FileStatusEvent(BaseModel):
    id: int
    upload_status: str
    error_message: str = ""
    filename: str


# ---- Chunked uploads ----
class InitUploadRequest(BaseModel):
    filename: str
    total_size: int
    chunk_size: int
    total_chunks: int
    logical_path: str = "/"
    mime_type: Optional[str] = None
    hash: Optional[str] = None

class InitUploadResponse(BaseModel):
    upload_id: str
    chunks_received: List[int] = Field(default_factory=list)

class ChunkProgress(BaseModel):
    chunk: int
    received_chunks: int
    total_chunks: int

class CompleteUploadResponse(BaseModel):
    file_id: int
    filename: str
    size: int
    hash: str

class UploadStatusResponse(BaseModel):
    upload_id: str
    status: str
    received_chunks: int
    total_chunks: int
    chunks_received: List[int]


# ---- Trash ----
class TrashedFileOut(BaseModel):
    id: int
    filename: str
    original_path: str
    file_size: int
    trashed_at: Optional[datetime] = None
    expires_in: str = ""

class TrashedFolderOut(BaseModel):
    id: int
    folder_path: str
    trashed_at: Optional[datetime] = None
    expires_in: str = ""

class TrashListing(BaseModel):
    retention_days: int
    total_size: int
    files: List[TrashedFileOut]
    folders: List[TrashedFolderOut]


# ---- Admin ----
class AdminCreateUserRequest(BaseModel):
    username: str = ""
    email: str = ""
    password: str = ""
    is_admin: bool = False

class AdminUserOut(BaseModel):
    id: int
    username: str
    email: str
    is_admin: bool
    storage_quota: int
    storage_used: int
    file_count: int = 0
    created_at: Optional[datetime] = None

class AdminStats(BaseModel):
    total_users: int
    total_files: int
    total_storage_used: int


# ---- Health ----
class HealthCheck(BaseModel):
    status: str
    message: str = ""
    latency: str = ""

class HealthResponse(BaseModel):
    status: str
    version: str
    uptime: str
    checks: Dict[str, HealthCheck]


# ---- Generic ----
class MessageResponse(BaseModel):
    message: str
    detail: Optional[Any] = None
