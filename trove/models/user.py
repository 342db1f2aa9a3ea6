"""User model."""

from sqlalchemy import Column, Integer, String, Boolean, BigInteger, DateTime
from trove.db.base import Base, utcnow


class User(Base):
    """Account owning a private namespace of files and folders."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    storage_quota = Column(BigInteger, nullable=False, default=10 * 1024 ** 3)
    storage_used = Column(BigInteger, nullable=False, default=0)
    deleted_retention_days = Column(Integer, nullable=True)  # None = system default
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
