"""Prometheus metrics, exposed at /metrics."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

HTTP_REQUESTS_TOTAL = Counter(
    "trove_http_requests_total",
    "Total number of HTTP requests",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "trove_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path", "status"],
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "trove_http_requests_in_flight",
    "Current number of HTTP requests being served",
)

LOGIN_ATTEMPTS = Counter(
    "trove_login_attempts_total",
    "Total number of login attempts",
    ["status"],
)

REGISTER_ATTEMPTS = Counter(
    "trove_register_attempts_total",
    "Total number of registration attempts",
    ["status"],
)

FILES_UPLOADED = Counter(
    "trove_files_uploaded_total",
    "Files accepted into a user's namespace",
    ["source"],
)

FILES_PURGED = Counter(
    "trove_files_purged_total",
    "File rows permanently deleted",
)


def status_class(code: int) -> str:
    if 200 <= code < 300:
        return "2xx"
    if 300 <= code < 400:
        return "3xx"
    if 400 <= code < 500:
        return "4xx"
    if code >= 500:
        return "5xx"
    return "unknown"


def record_request(method: str, path: str, status: int, seconds: float) -> None:
    labels = (method, path, status_class(status))
    HTTP_REQUESTS_TOTAL.labels(*labels).inc()
    HTTP_REQUEST_DURATION.labels(*labels).observe(seconds)


def render() -> tuple[bytes, str]:
    """Current registry in the Prometheus text format, with its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
