"""Integration tests for the resumable chunked upload protocol."""

import asyncio
import hashlib
import os
from datetime import timedelta

import pytest

from trove.db.base import utcnow
from trove.models.file import File
from trove.models.upload_session import UploadSession


async def _init(client, headers, **overrides):
    body = {
        "filename": "greeting.txt",
        "total_size": 13,
        "chunk_size": 7,
        "total_chunks": 2,
        "logical_path": "/",
        "mime_type": "text/plain",
    }
    body.update(overrides)
    return await client.post("/api/uploads/init", headers=headers, json=body)


async def _put(client, headers, upload_id, chunk, content):
    return await client.post(
        f"/api/uploads/{upload_id}/chunk",
        headers=headers,
        params={"chunk": chunk},
        content=content,
    )


@pytest.mark.asyncio
async def test_chunked_upload_round_trip(http_client, make_user, db, storage):
    user, headers = make_user()
    content = b"Hello, World!"

    resp = await _init(http_client, headers, hash=hashlib.sha256(content).hexdigest())
    assert resp.status_code == 200
    upload_id = resp.json()["upload_id"]
    assert resp.json()["chunks_received"] == []

    resp = await _put(http_client, headers, upload_id, 0, b"Hello, ")
    assert resp.json() == {"chunk": 0, "received_chunks": 1, "total_chunks": 2}
    resp = await _put(http_client, headers, upload_id, 1, b"World!")
    assert resp.json() == {"chunk": 1, "received_chunks": 2, "total_chunks": 2}

    resp = await http_client.post(f"/api/uploads/{upload_id}/complete", headers=headers)
    assert resp.status_code == 200
    result = resp.json()
    assert result["size"] == 13
    assert result["hash"] == hashlib.sha256(content).hexdigest()
    assert result["filename"] == "greeting.txt"

    file = db.get(File, result["file_id"])
    with storage.open(file.storage_path) as reader:
        assert reader.read() == content
    session = db.get(UploadSession, upload_id)
    assert session.status == "completed"
    db.refresh(user)
    assert user.storage_used == 13

    resp = await http_client.get(f"/api/uploads/{upload_id}/status", headers=headers)
    assert resp.json() == {
        "upload_id": upload_id,
        "status": "completed",
        "received_chunks": 2,
        "total_chunks": 2,
        "chunks_received": [0, 1],
    }


@pytest.mark.asyncio
async def test_duplicate_chunk_is_idempotent(http_client, make_user):
    _, headers = make_user()
    upload_id = (await _init(http_client, headers)).json()["upload_id"]

    await _put(http_client, headers, upload_id, 0, b"Hello, ")
    resp = await _put(http_client, headers, upload_id, 0, b"Hello, ")
    assert resp.json()["received_chunks"] == 1
    await _put(http_client, headers, upload_id, 1, b"World!")

    resp = await http_client.get(f"/api/uploads/{upload_id}/status", headers=headers)
    assert resp.json()["chunks_received"] == [0, 1]

    resp = await http_client.post(f"/api/uploads/{upload_id}/complete", headers=headers)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_chunks_in_any_order_and_concurrently(http_client, make_user):
    _, headers = make_user()
    parts = [b"aa", b"bb", b"cc", b"dd"]
    upload_id = (await _init(http_client, headers, total_size=8, chunk_size=2, total_chunks=4)).json()["upload_id"]

    await asyncio.gather(*(_put(http_client, headers, upload_id, i, parts[i]) for i in (3, 1, 0, 2)))

    resp = await http_client.get(f"/api/uploads/{upload_id}/status", headers=headers)
    assert resp.json()["chunks_received"] == [0, 1, 2, 3]
    resp = await http_client.post(f"/api/uploads/{upload_id}/complete", headers=headers)
    assert resp.json()["hash"] == hashlib.sha256(b"".join(parts)).hexdigest()


@pytest.mark.asyncio
async def test_hash_mismatch_rejected(http_client, make_user, db, storage):
    user, headers = make_user()
    resp = await _init(http_client, headers, total_size=12, chunk_size=12, total_chunks=1, hash="invalid")
    upload_id = resp.json()["upload_id"]
    await _put(http_client, headers, upload_id, 0, b"test content")

    resp = await http_client.post(f"/api/uploads/{upload_id}/complete", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "File integrity check failed"

    assert db.query(File).filter(File.user_id == user.id).count() == 0
    assert storage.file_count() == 0
    db.refresh(user)
    assert user.storage_used == 0


@pytest.mark.asyncio
async def test_complete_with_missing_chunk(http_client, make_user):
    _, headers = make_user()
    upload_id = (await _init(http_client, headers)).json()["upload_id"]
    await _put(http_client, headers, upload_id, 0, b"Hello, ")

    resp = await http_client.post(f"/api/uploads/{upload_id}/complete", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing chunks: 1/2 received"


@pytest.mark.asyncio
async def test_size_mismatch_rejected(http_client, make_user):
    _, headers = make_user()
    upload_id = (await _init(http_client, headers)).json()["upload_id"]
    await _put(http_client, headers, upload_id, 0, b"Hello")
    await _put(http_client, headers, upload_id, 1, b"World!")

    resp = await http_client.post(f"/api/uploads/{upload_id}/complete", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "File size mismatch"


@pytest.mark.asyncio
async def test_invalid_init_and_chunk_index(http_client, make_user):
    _, headers = make_user()
    assert (await _init(http_client, headers, total_size=0)).status_code == 400
    assert (await _init(http_client, headers, logical_path="/../etc")).status_code == 400

    upload_id = (await _init(http_client, headers)).json()["upload_id"]
    assert (await _put(http_client, headers, upload_id, 2, b"x")).status_code == 400
    assert (await _put(http_client, headers, upload_id, -1, b"x")).status_code == 400
    assert (await _put(http_client, headers, "no-such-session", 0, b"x")).status_code == 404


@pytest.mark.asyncio
async def test_init_refused_over_quota(http_client, make_user):
    _, headers = make_user(quota=10)
    resp = await _init(http_client, headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Storage quota exceeded"


@pytest.mark.asyncio
async def test_expired_session_is_gone(http_client, make_user, db):
    _, headers = make_user()
    upload_id = (await _init(http_client, headers)).json()["upload_id"]
    session = db.get(UploadSession, upload_id)
    session.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    resp = await _put(http_client, headers, upload_id, 0, b"Hello, ")
    assert resp.status_code == 410
    db.expire_all()
    assert db.get(UploadSession, upload_id).status == "expired"


@pytest.mark.asyncio
async def test_cancel_is_idempotent(http_client, make_user, db):
    _, headers = make_user()
    upload_id = (await _init(http_client, headers)).json()["upload_id"]
    await _put(http_client, headers, upload_id, 0, b"Hello, ")
    temp_dir = db.get(UploadSession, upload_id).temp_dir

    assert (await http_client.delete(f"/api/uploads/{upload_id}", headers=headers)).status_code == 204
    assert (await http_client.delete(f"/api/uploads/{upload_id}", headers=headers)).status_code == 204

    db.expire_all()
    assert db.get(UploadSession, upload_id).status == "cancelled"
    resp = await _put(http_client, headers, upload_id, 1, b"World!")
    assert resp.status_code == 400
    for _ in range(50):
        if not os.path.exists(temp_dir):
            break
        await asyncio.sleep(0.05)
    assert not os.path.exists(temp_dir)


@pytest.mark.asyncio
async def test_sessions_are_private(http_client, make_user):
    _, alice = make_user("alice")
    _, bob = make_user("bob")
    upload_id = (await _init(http_client, alice)).json()["upload_id"]

    resp = await http_client.get(f"/api/uploads/{upload_id}/status", headers=bob)
    assert resp.status_code == 404
