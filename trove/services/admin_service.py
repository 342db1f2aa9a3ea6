"""Admin service — user management and system statistics."""

import logging
import threading
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from trove.core.exceptions import ResourceNotFoundError, ValidationError
from trove.core.security import hash_password
from trove.models.file import File
from trove.models.folder import Folder
from trove.models.upload_session import UploadSession
from trove.models.user import User
from trove.services.auth_service import validate_new_password
from trove.services.chunked_upload_service import remove_temp_dir
from trove.services.trash_service import reclaim_storage

logger = logging.getLogger("trove")


class AdminService:
    """Operations reserved for administrators."""

    @staticmethod
    def _get_user(db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User not found")
        return user

    @staticmethod
    def stats(db: Session) -> Dict[str, Any]:
        return {
            "total_users": db.query(func.count(User.id)).scalar() or 0,
            "total_files": db.query(func.count(File.id)).filter(File.trashed_at.is_(None)).scalar() or 0,
            "total_storage_used": db.query(func.coalesce(func.sum(User.storage_used), 0)).scalar() or 0,
        }

    @staticmethod
    def list_users(db: Session) -> List[Dict[str, Any]]:
        counts = dict(
            db.query(File.user_id, func.count(File.id))
            .filter(File.trashed_at.is_(None))
            .group_by(File.user_id)
            .all()
        )
        users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
        return [
            {
                "id": u.id,
                "username": u.username,
                "email": u.email,
                "is_admin": u.is_admin,
                "storage_quota": u.storage_quota,
                "storage_used": u.storage_used,
                "file_count": counts.get(u.id, 0),
                "created_at": u.created_at,
            }
            for u in users
        ]

    @staticmethod
    def toggle_admin(db: Session, actor: User, user_id: int) -> User:
        if actor.id == user_id:
            raise ValidationError("You cannot change your own admin status")
        user = AdminService._get_user(db, user_id)
        user.is_admin = not user.is_admin
        db.commit()
        logger.info("Admin %d set is_admin=%s on user %d", actor.id, user.is_admin, user.id)
        return user

    @staticmethod
    def set_quota(db: Session, user_id: int, quota: int) -> User:
        if quota < 0:
            raise ValidationError("Quota must be a non-negative number of bytes")
        user = AdminService._get_user(db, user_id)
        if quota < user.storage_used:
            logger.warning(
                "Quota for user %d set to %d, below current usage %d", user.id, quota, user.storage_used,
            )
        user.storage_quota = quota
        db.commit()
        return user

    @staticmethod
    def reset_password(db: Session, user_id: int, new_password: str) -> User:
        validate_new_password(new_password or "")
        user = AdminService._get_user(db, user_id)
        user.hashed_password = hash_password(new_password)
        db.commit()
        logger.info("Password reset for user %d", user.id)
        return user

    @staticmethod
    def delete_user(db: Session, actor: User, user_id: int) -> str:
        """Remove a user and all their rows; their objects are deleted in the background."""
        if actor.id == user_id:
            raise ValidationError("You cannot delete your own account")
        user = AdminService._get_user(db, user_id)
        username = user.username

        storage_paths = [
            path for (path,) in db.query(File.storage_path).filter(File.user_id == user_id).distinct().all()
        ]
        temp_dirs = [
            d for (d,) in db.query(UploadSession.temp_dir).filter(UploadSession.user_id == user_id).all() if d
        ]
        try:
            db.query(File).filter(File.user_id == user_id).delete(synchronize_session=False)
            db.query(Folder).filter(Folder.user_id == user_id).delete(synchronize_session=False)
            db.query(UploadSession).filter(UploadSession.user_id == user_id).delete(synchronize_session=False)
            db.delete(user)
            db.commit()
        except Exception:
            db.rollback()
            raise

        def _cleanup():
            reclaim_storage(storage_paths)
            for temp_dir in temp_dirs:
                remove_temp_dir(temp_dir, background=False)
            logger.info("Removed %d storage objects of deleted user %s", len(storage_paths), username)

        threading.Thread(target=_cleanup, name="trove-user-cleanup", daemon=True).start()
        logger.info("User %s (id=%d) deleted", username, user_id)
        return username


admin_service = AdminService()
