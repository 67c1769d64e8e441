"""Prometheus metrics: request count by route/status, latency, presign mints, rate limits, scan verdicts."""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total requests",
    ["method", "path", "status_class"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
PRESIGN_MINT_TOTAL = Counter(
    "broker_presigned_url_mint_total",
    "Presigned URLs issued",
    ["operation"],  # put | get | part
)
RATE_LIMITED_TOTAL = Counter(
    "broker_rate_limited_total",
    "Requests rejected by the rate limiter",
)
SCAN_VERDICT_TOTAL = Counter(
    "broker_scan_verdict_total",
    "Scan-status verdicts seen at download time",
    ["verdict"],  # clean | infected | pending
)
UPSTREAM_ERROR_TOTAL = Counter(
    "broker_upstream_errors_total",
    "Object store calls that failed",
    ["operation"],
)

_KNOWN_PATHS = frozenset({
    "/s3/presign-put", "/s3/presign", "/s3/presign-get", "/s3/create",
    "/s3/sign", "/s3/complete", "/s3/abort",
})


def _status_class(status: int) -> str:
    if status < 200:
        return "1xx"
    if status < 300:
        return "2xx"
    if status < 400:
        return "3xx"
    if status < 500:
        return "4xx"
    return "5xx"


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    # Unknown paths collapse to one label to bound cardinality (scanners probe random URLs)
    if path not in _KNOWN_PATHS:
        path = "other"
    sc = _status_class(status_code)
    REQUEST_COUNT.labels(method=method, path=path, status_class=sc).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(latency_seconds)


def record_presign_mint(operation: str) -> None:
    PRESIGN_MINT_TOTAL.labels(operation=operation).inc()


def record_rate_limited() -> None:
    RATE_LIMITED_TOTAL.inc()


def record_scan_verdict(verdict: str) -> None:
    SCAN_VERDICT_TOTAL.labels(verdict=verdict).inc()


def record_upstream_error(operation: str) -> None:
    UPSTREAM_ERROR_TOTAL.labels(operation=operation).inc()


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
