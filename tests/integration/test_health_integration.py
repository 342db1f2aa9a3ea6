"""Integration tests for the health endpoint and the service root."""

import time

import pytest

from trove.api import health
from trove.core.exceptions import StorageError


class _BrokenStorage:
    def health_check(self):
        raise StorageError("unreachable")


@pytest.mark.asyncio
async def test_health_ok(http_client):
    resp = await http_client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == "0.1.0"
    assert set(body["checks"]) == {"database", "storage"}
    assert body["checks"]["database"]["latency"].endswith("ms")
    assert resp.headers["x-request-id"]


@pytest.mark.asyncio
async def test_health_reports_storage_failure(http_client, monkeypatch):
    monkeypatch.setattr(health, "get_storage", lambda: _BrokenStorage())
    resp = await http_client.get("/api/health")
    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "unhealthy"
    assert body["checks"]["storage"] == {"status": "unhealthy", "message": "storage unavailable", "latency": ""}
    assert body["checks"]["database"]["status"] == "healthy"


@pytest.mark.asyncio
async def test_root(http_client):
    resp = await http_client.get("/")
    assert resp.json() == {"name": "Trove", "version": "0.1.0", "docs": "/docs"}


class _SlowStorage:
    def health_check(self):
        time.sleep(0.5)


@pytest.mark.asyncio
async def test_health_reports_timeout(http_client, monkeypatch):
    monkeypatch.setattr(health, "CHECK_TIMEOUT_SECONDS", 0.1)
    monkeypatch.setattr(health, "get_storage", lambda: _SlowStorage())
    resp = await http_client.get("/api/health")
    assert resp.status_code == 503
    body = resp.json()
    assert body["checks"]["storage"]["message"] == "storage check timed out"
    assert body["checks"]["database"]["status"] == "healthy"
