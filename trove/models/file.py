"""Stored file metadata model."""

from sqlalchemy import Column, Integer, String, BigInteger, DateTime, ForeignKey, Index
from trove.db.base import Base, utcnow

UPLOAD_PENDING = "pending"
UPLOAD_UPLOADING = "uploading"
UPLOAD_COMPLETED = "completed"
UPLOAD_FAILED = "failed"


class File(Base):
    """A file in a user's logical namespace, backed by a storage object."""
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    storage_path = Column(String(1024), nullable=False, index=True)  # shared by deduplicated rows
    logical_path = Column(String(1024), nullable=False, default="/", index=True)
    filename = Column(String(255), nullable=False)  # display name
    original_filename = Column(String(255), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    mime_type = Column(String(100), nullable=True)
    hash = Column(String(64), nullable=True, index=True)
    upload_status = Column(String(20), nullable=False, default=UPLOAD_COMPLETED, index=True)
    error_message = Column(String(500), nullable=True)
    temp_path = Column(String(1024), nullable=True)
    trashed_at = Column(DateTime, nullable=True, index=True)
    original_logical_path = Column(String(1024), nullable=True)
    trash_batch_id = Column(String(36), nullable=True, index=True)  # set when trashed with a folder
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_files_user_hash_status", "user_id", "hash", "upload_status"),
    )
