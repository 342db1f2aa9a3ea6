"""Shared pytest fixtures: isolated SQLite database, memory storage, HTTP client."""

import io
import os
import tempfile

# The app reads its settings at import time, so the environment goes first.
_TEST_ROOT = tempfile.mkdtemp(prefix="trove-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_ROOT, 'trove.db')}"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["ENV"] = "test"
os.environ["BCRYPT_COST"] = "4"
os.environ["TEMP_DIR"] = _TEST_ROOT

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from trove.core.flash import FLASH_COOKIE, decode_flash
from trove.core.rate_limiter import limiter
from trove.db.session import SessionLocal, init_db
from trove.main import app
from trove.models.file import File, UPLOAD_COMPLETED
from trove.models.folder import Folder
from trove.models.upload_session import UploadSession
from trove.models.user import User
from trove.services.auth_service import auth_service
from trove.services.quota import quota_service
from trove.services.upload_worker import upload_pool
from trove.storage.factory import get_storage


@pytest.fixture(scope="session", autouse=True)
def database():
    """Create the schema once and run the upload workers for the whole session."""
    init_db()
    upload_pool.start()
    yield
    upload_pool.shutdown()


@pytest.fixture(autouse=True)
def clean_state():
    """Every test starts with empty tables and an empty object store."""
    yield
    upload_pool.wait_for_pending_uploads()
    session = SessionLocal()
    try:
        for model in (File, Folder, UploadSession, User):
            session.query(model).delete()
        session.commit()
    finally:
        session.close()
    get_storage().clear()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Every test gets a fresh auth rate-limit window."""
    limiter.reset()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage():
    return get_storage()


@pytest_asyncio.fixture
async def http_client():
    """HTTP client bound to the ASGI app, no real server involved."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_user(db):
    """Create a user and return (user, auth headers)."""

    def _make(username="alice", quota=None, is_admin=False, password="password123"):
        user = auth_service.create_user(db, username, f"{username}@example.com", password, is_admin=is_admin)
        if quota is not None:
            user.storage_quota = quota
            db.commit()
        token = auth_service.token_for(user)["access_token"]
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def add_file(db, storage):
    """Store content and index it as a completed file, crediting quota."""

    def _add(user, filename, content=b"data", logical_path="/"):
        result = storage.save(io.BytesIO(content), filename, "text/plain")
        file = File(
            user_id=user.id,
            storage_path=result.path,
            logical_path=logical_path,
            filename=filename,
            original_filename=filename,
            file_size=result.size,
            mime_type="text/plain",
            hash=result.hash,
            upload_status=UPLOAD_COMPLETED,
        )
        db.add(file)
        db.flush()
        quota_service.credit(db, user.id, result.size)
        db.commit()
        db.refresh(file)
        return file

    return _add


@pytest.fixture
def flash():
    """Decode the flash cookie carried by a redirect response into (kind, message)."""

    def _read(response):
        value = response.cookies.get(FLASH_COOKIE)
        if value is None:
            return None
        return decode_flash(value.strip('"'))

    return _read

