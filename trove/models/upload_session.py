"""Resumable chunked upload session model."""

import json

from sqlalchemy import Column, Integer, String, Text, BigInteger, DateTime, ForeignKey
from trove.db.base import Base, utcnow

SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"
SESSION_CANCELLED = "cancelled"
SESSION_EXPIRED = "expired"

TERMINAL_STATUSES = (SESSION_COMPLETED, SESSION_CANCELLED, SESSION_EXPIRED)


class UploadSession(Base):
    """Server-side state of a chunked upload until it completes, is cancelled or expires."""
    __tablename__ = "upload_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    logical_path = Column(String(1024), nullable=False, default="/")
    total_size = Column(BigInteger, nullable=False)
    total_chunks = Column(Integer, nullable=False)
    chunk_size = Column(BigInteger, nullable=False)
    received_chunks = Column(Integer, nullable=False, default=0)
    chunks_received = Column(Text, nullable=False, default="[]")  # JSON array of indices
    status = Column(String(20), nullable=False, default=SESSION_ACTIVE, index=True)
    hash = Column(String(64), nullable=True)
    mime_type = Column(String(100), nullable=True)
    temp_dir = Column(String(1024), nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def chunk_list(self) -> list[int]:
        """Decoded list of received chunk indices."""
        try:
            return [int(n) for n in json.loads(self.chunks_received or "[]")]
        except (ValueError, TypeError):
            return []
