"""FastAPI app: CORS, request logging, error envelope, /s3 routes, health and metrics."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.responses import JSONResponse, Response

from upload_broker.api.uploads import router as uploads_router
from upload_broker.core.config import get_settings
from upload_broker.core.cors import CORSMiddleware
from upload_broker.core.deps import get_rate_limiter
from upload_broker.core.errors import install_error_handlers
from upload_broker.core.metrics import get_metrics
from upload_broker.core.rate_limit import SlidingWindowRateLimiter
from upload_broker.core.request_logging import RequestLoggingMiddleware

logger = logging.getLogger(__name__)

# Missing S3_* configuration raises here: the process refuses to start
settings = get_settings()
if settings.log_json:
    for h in logging.getLogger("upload_broker.request").handlers[:]:
        logging.getLogger("upload_broker.request").removeHandler(h)
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger("upload_broker.request").addHandler(h)
    logging.getLogger("upload_broker.request").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Upload broker starting: bucket=%s endpoint=%s rate_limit=%s/%ss backend=%s auth=%s",
        settings.s3_bucket,
        settings.s3_endpoint,
        settings.rate_limit_requests_per_window,
        settings.rate_limit_window_seconds,
        settings.rate_limit_backend,
        settings.auth_mode,
    )
    yield
    store = get_rate_limiter().store
    close = getattr(store, "close", None)
    if close is not None:
        await close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
install_error_handlers(app)


@app.middleware("http")
async def security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Cache-Control"] = "no-store"
    return response


app.add_middleware(RequestLoggingMiddleware)
# Added last so it runs first: OPTIONS never reaches logging, auth or routing
app.add_middleware(CORSMiddleware, allow_origins=settings.cors_origin_list)


app.include_router(uploads_router)


def require_metrics_access(x_metrics_secret: str | None = Header(None, alias="X-Metrics-Secret")) -> None:
    """Allow /metrics when no METRICS_SECRET is configured, else require the matching header."""
    secret = get_settings().metrics_secret
    if secret and x_metrics_secret != secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Metrics-Secret",
        )


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    """Liveness: no auth, no store."""
    return {"status": "ok"}


@app.get("/readyz")
async def readyz(limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter)):
    """Readiness: rate-limit store reachable."""
    try:
        await limiter.store.ping()
        return {"status": "ok"}
    except Exception:
        logger.warning("Readiness check failed", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "detail": "rate limit store unreachable"},
        )


@app.get("/metrics", response_class=Response)
async def metrics(_: None = Depends(require_metrics_access)):
    """Prometheus metrics. Guard with METRICS_SECRET + X-Metrics-Secret header outside local dev."""
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)
