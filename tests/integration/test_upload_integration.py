"""Integration tests for the streaming multipart upload and the upload status surface."""

import os

import pytest

from trove.core.config import settings
from trove.core.exceptions import QueueFullError
from trove.models.file import File, UPLOAD_COMPLETED, UPLOAD_FAILED
from trove.services.upload_worker import upload_pool

MiB = 1024 * 1024
HELLO_WORLD_SHA256 = "dffd6021bb2bd5b0af676290809ec3a53191dd81c7f70a4b28688a362182986f"


def _temp_files():
    return {name for name in os.listdir(settings.TEMP_DIR) if name.startswith("trove-upload-")}


async def _upload(client, headers, name, content, folder="/"):
    return await client.post(
        "/api/upload",
        headers=headers,
        data={"folder": folder},
        files={"file": (name, content, "text/plain")},
    )


@pytest.mark.asyncio
async def test_upload_happy_path(http_client, make_user, db, flash):
    user, headers = make_user(quota=100 * MiB)

    resp = await _upload(http_client, headers, "hello.txt", b"Hello, World!")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/files"
    assert flash(resp) == ("success", "File uploaded successfully.")

    upload_pool.wait_for_pending_uploads()
    db.expire_all()
    file = db.query(File).filter(File.user_id == user.id).one()
    assert file.file_size == 13
    assert file.hash == HELLO_WORLD_SHA256
    assert file.upload_status == UPLOAD_COMPLETED
    assert not file.storage_path.startswith("pending-")
    assert file.temp_path is None
    db.refresh(user)
    assert user.storage_used == 13


@pytest.mark.asyncio
async def test_upload_into_folder_and_download(http_client, make_user, db):
    user, headers = make_user()

    resp = await _upload(http_client, headers, "notes.txt", b"some notes", folder="/work/../docs/")
    assert resp.headers["location"] == "/files?folder=%2Fdocs"
    upload_pool.wait_for_pending_uploads()

    file = db.query(File).filter(File.user_id == user.id).one()
    assert file.logical_path == "/docs"

    resp = await http_client.get(f"/api/files/{file.id}/download", headers=headers)
    assert resp.status_code == 200
    assert resp.content == b"some notes"
    assert resp.headers["content-disposition"].startswith('attachment; filename="notes.txt"')
    assert "filename*=UTF-8''notes.txt" in resp.headers["content-disposition"]

    resp = await http_client.get(f"/api/files/{file.id}/download?inline=1", headers=headers)
    assert resp.headers["content-disposition"].startswith("inline;")
    assert resp.headers["x-content-type-options"] == "nosniff"


@pytest.mark.asyncio
async def test_duplicate_content_shares_storage(http_client, make_user, db, storage, flash):
    user, headers = make_user()

    await _upload(http_client, headers, "a.txt", b"X")
    upload_pool.wait_for_pending_uploads()
    assert storage.file_count() == 1

    resp = await _upload(http_client, headers, "b.txt", b"X")
    assert flash(resp) == ("success", 'File "b.txt" uploaded (deduplicated)')
    upload_pool.wait_for_pending_uploads()

    db.expire_all()
    files = db.query(File).filter(File.user_id == user.id).order_by(File.id).all()
    assert [f.filename for f in files] == ["a.txt", "b.txt"]
    assert files[0].storage_path == files[1].storage_path
    assert storage.file_count() == 1
    db.refresh(user)
    assert user.storage_used == 2


@pytest.mark.asyncio
async def test_same_name_gets_display_suffix(http_client, make_user, db, flash):
    user, headers = make_user()

    await _upload(http_client, headers, "report.txt", b"v1")
    resp = await _upload(http_client, headers, "report.txt", b"v2")
    assert flash(resp) == ("success", 'File uploaded as "report (1).txt"')
    upload_pool.wait_for_pending_uploads()

    names = sorted(f.filename for f in db.query(File).filter(File.user_id == user.id))
    assert names == ["report (1).txt", "report.txt"]


@pytest.mark.asyncio
async def test_quota_denial(http_client, make_user, db):
    user, headers = make_user(quota=100)
    before = _temp_files()

    resp = await _upload(http_client, headers, "big.bin", b"x" * 200)
    assert resp.status_code == 507
    assert resp.json()["detail"] == "Storage quota exceeded"

    assert db.query(File).filter(File.user_id == user.id).count() == 0
    db.refresh(user)
    assert user.storage_used == 0
    assert _temp_files() == before


@pytest.mark.asyncio
async def test_oversize_body_rejected(http_client, make_user, db, monkeypatch):
    user, headers = make_user()
    monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE", 64)
    before = _temp_files()

    resp = await _upload(http_client, headers, "big.bin", b"x" * 500)
    assert resp.status_code == 413
    assert resp.json()["detail"].startswith("File too large")
    assert db.query(File).filter(File.user_id == user.id).count() == 0
    assert _temp_files() == before


@pytest.mark.asyncio
async def test_missing_file_part(http_client, make_user):
    _, headers = make_user()
    resp = await http_client.post(
        "/api/upload",
        headers=headers,
        data={"folder": "/"},
        files={"other": ("x.txt", b"ignored", "text/plain")},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No file provided"


@pytest.mark.asyncio
async def test_upload_requires_auth(http_client):
    resp = await http_client.post("/api/upload", files={"file": ("a.txt", b"a", "text/plain")})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_full_queue_marks_row_failed_and_dismiss_refunds(http_client, make_user, db, monkeypatch):
    user, headers = make_user()

    def reject(job):
        raise QueueFullError("Upload queue is full. Please try again later.")

    monkeypatch.setattr(upload_pool, "enqueue", reject)
    resp = await _upload(http_client, headers, "late.txt", b"late bytes")
    assert resp.status_code == 303

    file = db.query(File).filter(File.user_id == user.id).one()
    assert file.upload_status == UPLOAD_FAILED
    assert file.temp_path is None
    db.refresh(user)
    assert user.storage_used == len(b"late bytes")

    resp = await http_client.get("/api/files/status", headers=headers)
    assert resp.json() == [{
        "id": file.id,
        "upload_status": "failed",
        "error_message": "Upload queue is full. Please try again later.",
        "filename": "late.txt",
    }]

    resp = await http_client.post(f"/api/files/{file.id}/dismiss", headers=headers)
    assert resp.json() == {"success": True}
    db.refresh(user)
    assert user.storage_used == 0

    resp = await http_client.post(f"/api/files/{file.id}/dismiss", headers=headers)
    assert resp.status_code == 404
    db.refresh(user)
    assert user.storage_used == 0


@pytest.mark.asyncio
async def test_status_hides_internal_failure_details(http_client, make_user, add_file, db):
    user, headers = make_user()
    file = add_file(user, "broken.txt")
    file.upload_status = UPLOAD_FAILED
    file.error_message = "Storage upload failed: connection refused to 10.0.0.7"
    db.commit()

    resp = await http_client.get("/api/files/status", headers=headers)
    events = resp.json()
    assert events[0]["error_message"] == "Upload failed. Check server logs for details."


@pytest.mark.asyncio
async def test_dismiss_refuses_completed_files(http_client, make_user, add_file):
    user, headers = make_user()
    file = add_file(user, "fine.txt")

    resp = await http_client.post(f"/api/files/{file.id}/dismiss", headers=headers)
    assert resp.status_code == 400
