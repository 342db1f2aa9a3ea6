"""Admin API router — statistics, user management, global trash."""

from typing import List

from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session

from trove.core.exceptions import TroveError
from trove.core.flash import redirect_with_flash
from trove.core.security import require_admin
from trove.db.session import get_db
from trove.models.user import User
from trove.schemas.schemas import AdminStats, AdminUserOut
from trove.services.admin_service import admin_service
from trove.services.auth_service import auth_service
from trove.services.trash_service import trash_service

router = APIRouter(prefix="/admin", tags=["admin"])

USERS_URL = "/admin/users"


@router.get("/stats", response_model=AdminStats)
async def admin_stats(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return admin_service.stats(db)


@router.get("/users", response_model=List[AdminUserOut])
async def admin_list_users(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """All users with their file counts (admin only)."""
    return admin_service.list_users(db)


@router.post("/users/create")
async def admin_create_user(
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    is_admin: bool = Form(False),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        user = auth_service.create_user(db, username, email, password, is_admin=is_admin)
    except TroveError as e:
        return redirect_with_flash(USERS_URL, "error", e.message)
    return redirect_with_flash(USERS_URL, "success", f"User {user.username} created")


@router.post("/users/{user_id}/toggle-admin")
async def admin_toggle_admin(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        user = admin_service.toggle_admin(db, admin, user_id)
    except TroveError as e:
        return redirect_with_flash(USERS_URL, "error", e.message)
    state = "granted" if user.is_admin else "revoked"
    return redirect_with_flash(USERS_URL, "success", f"Admin rights {state} for {user.username}")


@router.post("/users/{user_id}/quota")
async def admin_update_quota(
    user_id: int,
    quota: int = Form(...),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        user = admin_service.set_quota(db, user_id, quota)
    except TroveError as e:
        return redirect_with_flash(USERS_URL, "error", e.message)
    return redirect_with_flash(USERS_URL, "success", f"Quota updated for {user.username}")


@router.post("/users/{user_id}/delete")
async def admin_delete_user(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        username = admin_service.delete_user(db, admin, user_id)
    except TroveError as e:
        return redirect_with_flash(USERS_URL, "error", e.message)
    return redirect_with_flash(USERS_URL, "success", f"User {username} deleted")


@router.post("/users/{user_id}/reset-password")
async def admin_reset_password(
    user_id: int,
    new_password: str = Form(""),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        user = admin_service.reset_password(db, user_id, new_password)
    except TroveError as e:
        return redirect_with_flash(USERS_URL, "error", e.message)
    return redirect_with_flash(USERS_URL, "success", f"Password reset for {user.username}")


@router.post("/deleted/empty-all")
async def admin_empty_all_trash(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    count = trash_service.empty(db)
    return redirect_with_flash(USERS_URL, "success", f"All deleted items permanently removed: {count} files")
