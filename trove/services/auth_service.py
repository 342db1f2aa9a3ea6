"""Auth service — registration, login and password changes."""

import logging
from typing import Any, Dict

from sqlalchemy import or_
from sqlalchemy.orm import Session

from trove.core.config import settings
from trove.core.exceptions import (
    AuthenticationError, AuthorizationError, ResourceConflictError, ValidationError,
)
from trove.core.security import create_access_token, hash_password, verify_password
from trove.models.user import User

logger = logging.getLogger("trove")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72  # bcrypt ignores anything past 72 bytes


def validate_new_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 8 characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
        raise ValidationError("Password must be at most 72 characters")


class AuthService:
    """Handles authentication and account creation."""

    @staticmethod
    def token_for(user: User) -> Dict[str, Any]:
        token = create_access_token({"sub": str(user.id), "username": user.username})
        return {"access_token": token, "token_type": "bearer"}

    @staticmethod
    def create_user(
        db: Session,
        username: str,
        email: str,
        password: str,
        is_admin: bool = False,
    ) -> User:
        """Create a user with the default quota.

        Raises:
            ValidationError: If a field is missing or the password is too short.
            ResourceConflictError: If the username or email is taken.
        """
        username = (username or "").strip()
        email = (email or "").strip()
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required")
        validate_new_password(password)

        existing = db.query(User).filter(or_(User.username == username, User.email == email)).first()
        if existing:
            raise ResourceConflictError("Username or email already exists")

        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password),
            is_admin=is_admin,
            storage_quota=settings.DEFAULT_USER_QUOTA,
            storage_used=0,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Created user %s (id=%d, admin=%s)", user.username, user.id, user.is_admin)
        return user

    @staticmethod
    def register(db: Session, username: str, email: str, password: str) -> Dict[str, Any]:
        if not settings.ENABLE_REGISTRATION:
            raise AuthorizationError("Registration is disabled")
        user = AuthService.create_user(db, username, email, password)
        return AuthService.token_for(user)

    @staticmethod
    def authenticate(db: Session, username: str, password: str) -> Dict[str, Any]:
        """Check credentials and return a bearer token.

        Raises:
            AuthenticationError: If credentials are invalid.
        """
        user = db.query(User).filter(User.username == (username or "").strip()).first()
        if not user or not verify_password(password or "", user.hashed_password):
            raise AuthenticationError("Invalid username or password")
        return AuthService.token_for(user)

    @staticmethod
    def change_password(
        db: Session,
        user: User,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        if not current_password or not new_password or not confirm_password:
            raise ValidationError("All password fields are required")
        if new_password != confirm_password:
            raise ValidationError("New passwords do not match")
        validate_new_password(new_password)
        if not verify_password(current_password, user.hashed_password):
            raise AuthenticationError("Current password is incorrect")
        user.hashed_password = hash_password(new_password)
        db.commit()
        logger.info("Password changed for user %d", user.id)


auth_service = AuthService()
