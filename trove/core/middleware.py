"""CORS and request accounting middleware.

Every request gets an ID, an access-log line and a sample in the HTTP
metrics. Metrics are labelled by the matched route template
(``/api/files/{file_id}``) rather than the raw URL, so IDs and filenames
never become label values; requests that match no route share the
``unmatched`` label.
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from trove.core.config import settings
from trove.core.metrics import HTTP_REQUESTS_IN_FLIGHT, record_request

logger = logging.getLogger("trove")

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class RequestAccountingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        HTTP_REQUESTS_IN_FLIGHT.inc()
        try:
            response: Response = await call_next(request)
        except Exception:
            record_request(request.method, route_label(request), 500, time.perf_counter() - start)
            logger.error("%s %s failed [%s]", request.method, request.url.path, request_id)
            raise
        finally:
            HTTP_REQUESTS_IN_FLIGHT.dec()

        elapsed = time.perf_counter() - start
        route = route_label(request)
        record_request(request.method, route, response.status_code, elapsed)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed * 1000:.2f}"

        logger.info(
            "%s %s (%s) %d %.2fms [%s]",
            request.method,
            request.url.path,
            route,
            response.status_code,
            elapsed * 1000,
            request_id,
        )
        return response


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestAccountingMiddleware)
