"""Health API router — database and storage liveness."""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from trove.core.config import settings
from trove.db.session import SessionLocal
from trove.storage.factory import get_storage

logger = logging.getLogger("trove")

router = APIRouter(tags=["health"])

CHECK_TIMEOUT_SECONDS = 2.0
START_TIME = time.monotonic()

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="trove-health")


def _ping_database() -> None:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    finally:
        db.close()


def _ping_storage() -> None:
    get_storage().health_check()


async def run_check(check: Callable[[], None], name: str) -> Dict[str, str]:
    """Run a blocking check off the event loop under the deadline; report status, message and latency."""
    started = time.monotonic()
    loop = asyncio.get_running_loop()
    try:
        await asyncio.wait_for(loop.run_in_executor(_executor, check), timeout=CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Health check %s timed out", name)
        return {"status": "unhealthy", "message": f"{name} check timed out", "latency": ""}
    except Exception as e:
        logger.warning("Health check %s failed: %s", name, e)
        return {"status": "unhealthy", "message": f"{name} unavailable", "latency": ""}
    latency = f"{(time.monotonic() - started) * 1000:.2f}ms"
    return {"status": "healthy", "message": "", "latency": latency}


@router.get("/health")
async def health():
    """Comprehensive health check; 503 when any dependency is unhealthy."""
    database, storage = await asyncio.gather(
        run_check(_ping_database, "database"),
        run_check(_ping_storage, "storage"),
    )
    checks = {"database": database, "storage": storage}
    overall = "healthy" if all(c["status"] == "healthy" for c in checks.values()) else "unhealthy"
    body = {
        "status": overall,
        "version": settings.VERSION,
        "uptime": str(timedelta(seconds=int(time.monotonic() - START_TIME))),
        "checks": checks,
    }
    return JSONResponse(status_code=200 if overall == "healthy" else 503, content=body)
