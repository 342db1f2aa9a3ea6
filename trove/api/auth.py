"""Auth API router — register, login, me, change password.

Register, login and change-password share a per-address rate limit.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from trove.core.exceptions import TroveError
from trove.core.metrics import LOGIN_ATTEMPTS, REGISTER_ATTEMPTS
from trove.core.rate_limiter import auth_rate_limit, limiter
from trove.core.security import get_current_user
from trove.db.session import get_db
from trove.models.user import User
from trove.schemas.schemas import (
    ChangePasswordRequest, LoginRequest, MessageResponse, RegisterRequest, TokenResponse, UserOut,
)
from trove.services.auth_service import auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=201)
@limiter.limit(auth_rate_limit)
async def register(request: Request, body: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account and return a bearer token."""
    try:
        token = auth_service.register(db, body.username, body.email, body.password)
    except TroveError:
        REGISTER_ATTEMPTS.labels("failure").inc()
        raise
    REGISTER_ATTEMPTS.labels("success").inc()
    return token


@router.post("/login", response_model=TokenResponse)
@limiter.limit(auth_rate_limit)
async def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate and return a bearer token."""
    try:
        token = auth_service.authenticate(db, body.username, body.password)
    except TroveError:
        LOGIN_ATTEMPTS.labels("failure").inc()
        raise
    LOGIN_ATTEMPTS.labels("success").inc()
    return token


@router.get("/me", response_model=UserOut)
async def get_me(user: User = Depends(get_current_user)):
    """Current user profile with quota usage."""
    return user


@router.post("/change-password", response_model=MessageResponse)
@limiter.limit(auth_rate_limit)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    auth_service.change_password(db, user, body.current_password, body.new_password, body.confirm_password)
    return MessageResponse(message="Password changed successfully")
