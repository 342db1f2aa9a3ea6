"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded

from trove.core.config import settings
from trove.core.metrics import render as render_metrics
from trove.core.middleware import setup_middleware
from trove.core.rate_limiter import limiter, rate_limit_exceeded_handler
from trove.core.exceptions import TroveError
from trove.db.session import init_db
from trove.services.sweepers import RetentionSweeper, SessionSweeper
from trove.services.upload_worker import upload_pool
from trove.storage.factory import get_storage

from trove.api.auth import router as auth_router
from trove.api.files import router as files_router
from trove.api.uploads import router as uploads_router
from trove.api.folders import router as folders_router
from trove.api.deleted import router as deleted_router
from trove.api.admin import router as admin_router
from trove.api.health import router as health_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("trove")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting %s API", settings.APP_NAME)
    init_db()

    storage = get_storage()
    storage.validate_access()
    logger.info("Storage backend %s passed access check", storage.backend_type)

    upload_pool.start()
    sweepers = [RetentionSweeper(), SessionSweeper()]
    for sweeper in sweepers:
        sweeper.start()

    yield

    logger.info("Shutting down %s API", settings.APP_NAME)
    for sweeper in sweepers:
        sweeper.stop()
    upload_pool.shutdown()


app = FastAPI(
    title="Trove API",
    description="Multi-user file storage with quotas, folders and trash",
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(TroveError)
async def trove_exception_handler(request: Request, exc: TroveError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


# Register routers
app.include_router(auth_router, prefix="/api")
app.include_router(files_router, prefix="/api")
app.include_router(uploads_router, prefix="/api")
app.include_router(folders_router, prefix="/api")
app.include_router(deleted_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(health_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus scrape endpoint."""
    body, content_type = render_metrics()
    return Response(content=body, media_type=content_type)
