"""Integration tests for the admin surface."""

import asyncio

import pytest

from trove.core.security import verify_password
from trove.models.file import File
from trove.models.user import User


@pytest.mark.asyncio
async def test_admin_routes_require_admin(http_client, make_user):
    _, headers = make_user("plain")
    assert (await http_client.get("/api/admin/stats", headers=headers)).status_code == 403
    assert (await http_client.get("/api/admin/stats")).status_code == 401


@pytest.mark.asyncio
async def test_stats_and_user_list(http_client, make_user, add_file):
    _, admin = make_user("root", is_admin=True)
    alice, _ = make_user("alice")
    add_file(alice, "a.txt", b"aaaa")
    add_file(alice, "b.txt", b"bb")

    stats = (await http_client.get("/api/admin/stats", headers=admin)).json()
    assert stats == {"total_users": 2, "total_files": 2, "total_storage_used": 6}

    users = {u["username"]: u for u in (await http_client.get("/api/admin/users", headers=admin)).json()}
    assert users["alice"]["file_count"] == 2
    assert users["alice"]["storage_used"] == 6
    assert users["root"]["file_count"] == 0


@pytest.mark.asyncio
async def test_create_user(http_client, make_user, db, flash):
    _, admin = make_user("root", is_admin=True)
    form = {"username": "frank", "email": "frank@example.com", "password": "password123", "is_admin": "true"}

    resp = await http_client.post("/api/admin/users/create", headers=admin, data=form)
    assert resp.headers["location"] == "/admin/users"
    assert flash(resp) == ("success", "User frank created")
    assert db.query(User).filter(User.username == "frank").one().is_admin

    resp = await http_client.post("/api/admin/users/create", headers=admin, data=form)
    assert flash(resp) == ("error", "Username or email already exists")

    resp = await http_client.post("/api/admin/users/create", headers=admin, data={**form, "username": "g", "email": "g@x", "password": "short"})
    assert flash(resp)[0] == "error"


@pytest.mark.asyncio
async def test_toggle_admin_and_quota(http_client, make_user, db, flash):
    root, admin = make_user("root", is_admin=True)
    alice, _ = make_user("alice")

    resp = await http_client.post(f"/api/admin/users/{root.id}/toggle-admin", headers=admin)
    assert flash(resp) == ("error", "You cannot change your own admin status")

    resp = await http_client.post(f"/api/admin/users/{alice.id}/toggle-admin", headers=admin)
    assert flash(resp) == ("success", "Admin rights granted for alice")

    resp = await http_client.post(f"/api/admin/users/{alice.id}/quota", headers=admin, data={"quota": "-1"})
    assert flash(resp)[0] == "error"
    resp = await http_client.post(f"/api/admin/users/{alice.id}/quota", headers=admin, data={"quota": "2048"})
    assert flash(resp) == ("success", "Quota updated for alice")

    db.refresh(alice)
    assert alice.is_admin
    assert alice.storage_quota == 2048


@pytest.mark.asyncio
async def test_reset_password(http_client, make_user, db, flash):
    _, admin = make_user("root", is_admin=True)
    alice, _ = make_user("alice")

    resp = await http_client.post(f"/api/admin/users/{alice.id}/reset-password", headers=admin, data={"new_password": "short"})
    assert flash(resp)[0] == "error"
    resp = await http_client.post(f"/api/admin/users/{alice.id}/reset-password", headers=admin, data={"new_password": "fresh-password"})
    assert flash(resp) == ("success", "Password reset for alice")
    db.refresh(alice)
    assert verify_password("fresh-password", alice.hashed_password)


@pytest.mark.asyncio
async def test_delete_user_removes_rows_and_objects(http_client, make_user, add_file, db, storage, flash):
    root, admin = make_user("root", is_admin=True)
    alice, _ = make_user("alice")
    add_file(alice, "a.txt", b"alice data")
    alice_id = alice.id

    resp = await http_client.post(f"/api/admin/users/{root.id}/delete", headers=admin)
    assert flash(resp) == ("error", "You cannot delete your own account")

    resp = await http_client.post(f"/api/admin/users/{alice_id}/delete", headers=admin)
    assert flash(resp) == ("success", "User alice deleted")

    db.expire_all()
    assert db.get(User, alice_id) is None
    assert db.query(File).filter(File.user_id == alice_id).count() == 0
    for _ in range(50):
        if storage.file_count() == 0:
            break
        await asyncio.sleep(0.05)
    assert storage.file_count() == 0


@pytest.mark.asyncio
async def test_empty_all_trash(http_client, make_user, add_file, db, flash):
    _, admin = make_user("root", is_admin=True)
    alice, _ = make_user("alice")
    bob, _ = make_user("bob")
    for owner in (alice, bob):
        file = add_file(owner, f"{owner.username}.txt", owner.username.encode())
        file.trashed_at = file.created_at
    db.commit()

    resp = await http_client.post("/api/admin/deleted/empty-all", headers=admin)
    assert flash(resp) == ("success", "All deleted items permanently removed: 2 files")
    db.expire_all()
    assert db.query(File).count() == 0
