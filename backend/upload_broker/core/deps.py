"""FastAPI dependencies: broker services, caller admission (auth + rate limit), request deadline."""
import asyncio
from functools import lru_cache
from typing import Awaitable, TypeVar

from fastapi import Depends, Header, Request

from upload_broker.core.config import get_settings
from upload_broker.core.errors import RequestTimeout
from upload_broker.core.rate_limit import SlidingWindowRateLimiter, create_store
from upload_broker.core.security import AuthVerifier, create_verifier
from upload_broker.services.av_scan import ScanGate
from upload_broker.services.multipart import MultipartCoordinator
from upload_broker.services.notify import Notifier
from upload_broker.services.presign import PresignService
from upload_broker.services.signing import SignatureEngine
from upload_broker.services.storage import get_s3_client, get_storage
from upload_broker.services.storage.base import ObjectStore

T = TypeVar("T")


# ----- Process-wide services (built once, overridable in tests) -----


@lru_cache
def get_object_store() -> ObjectStore:
    return get_storage()


@lru_cache
def get_signature_engine() -> SignatureEngine:
    s = get_settings()
    return SignatureEngine(
        get_s3_client(),
        s.s3_bucket,
        default_expires=s.presign_default_expires_seconds,
        max_expires=s.presign_max_expires_seconds,
    )


@lru_cache
def get_rate_limiter() -> SlidingWindowRateLimiter:
    s = get_settings()
    return SlidingWindowRateLimiter(
        create_store(s),
        limit=s.rate_limit_requests_per_window,
        window_seconds=s.rate_limit_window_seconds,
    )


@lru_cache
def get_verifier() -> AuthVerifier:
    return create_verifier(get_settings())


@lru_cache
def get_notifier() -> Notifier:
    s = get_settings()
    return Notifier(s.notify_webhook_url, timeout=s.notify_timeout_seconds)


def get_scan_gate(store: ObjectStore = Depends(get_object_store)) -> ScanGate:
    return ScanGate(store)


def get_presign_service(
    engine: SignatureEngine = Depends(get_signature_engine),
    gate: ScanGate = Depends(get_scan_gate),
) -> PresignService:
    return PresignService(engine, gate, max_upload_bytes=get_settings().upload_max_bytes)


def get_multipart_coordinator(
    store: ObjectStore = Depends(get_object_store),
    engine: SignatureEngine = Depends(get_signature_engine),
) -> MultipartCoordinator:
    return MultipartCoordinator(store, engine)


# ----- Request deadline -----


def _start_deadline(request: Request) -> None:
    if getattr(request.state, "deadline", None) is None:
        loop = asyncio.get_running_loop()
        request.state.deadline = loop.time() + get_settings().request_timeout_seconds


async def within_deadline(request: Request, awaitable: Awaitable[T]) -> T:
    """Await under the request's overall budget (rate-limit store plus object store calls)."""
    _start_deadline(request)
    remaining = request.state.deadline - asyncio.get_running_loop().time()
    if remaining <= 0:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RequestTimeout("Request timed out")
    try:
        return await asyncio.wait_for(awaitable, timeout=remaining)
    except asyncio.TimeoutError:
        raise RequestTimeout("Request timed out")


# ----- Caller admission -----


def client_identity(request: Request, subject: str | None) -> str:
    """Authenticated subject, else trusted proxy header, else socket peer."""
    if subject:
        return f"user:{subject}"
    header = get_settings().trusted_client_ip_header
    if header:
        value = request.headers.get(header)
        if value:
            return f"ip:{value.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "unknown"


def admit_caller(fail_open: bool):
    """Dependency factory: verify caller, then charge the rate limiter.

    fail_open decides what happens when the rate-limit store is down: True lets the
    request through (reads, cleanup), False rejects it (URL issuance).
    """

    async def dependency(
        request: Request,
        authorization: str | None = Header(None),
        verifier: AuthVerifier = Depends(get_verifier),
        limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
    ) -> str:
        _start_deadline(request)
        subject = verifier.verify(authorization)
        identity = client_identity(request, subject)
        request.state.client_id = identity
        await within_deadline(request, limiter.check(identity, fail_open=fail_open))
        return identity

    return dependency


admit_issuance = admit_caller(fail_open=False)
admit_read = admit_caller(fail_open=True)
