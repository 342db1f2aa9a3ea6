"""Explicit folder model."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from trove.db.base import Base, utcnow


class Folder(Base):
    """A folder the user created explicitly."""
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    folder_path = Column(String(1024), nullable=False)
    trashed_at = Column(DateTime, nullable=True, index=True)
    original_folder_path = Column(String(1024), nullable=True)
    trash_batch_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_folders_user_path", "user_id", "folder_path"),
    )
