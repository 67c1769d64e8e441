"""Pytest fixtures: env, fake object store, signature engine, rate limiter, test client."""
import os

# Settings are read at import time of upload_broker.main; required S3 config must exist first.
os.environ.setdefault("S3_ENDPOINT", "https://account.r2.cloudflarestorage.com")
os.environ.setdefault("S3_BUCKET", "test-bucket")
os.environ.setdefault("S3_REGION", "auto")
os.environ.setdefault("S3_ACCESS_KEY_ID", "test-key")
os.environ.setdefault("S3_SECRET_ACCESS_KEY", "test-secret")

import itertools
import time

import pytest
from httpx import ASGITransport, AsyncClient

from upload_broker.core.config import get_settings
from upload_broker.core.deps import (
    get_notifier,
    get_object_store,
    get_rate_limiter,
    get_signature_engine,
    get_verifier,
)
from upload_broker.core.errors import UpstreamError
from upload_broker.core.rate_limit import MemoryKeyValueStore, SlidingWindowRateLimiter
from upload_broker.core.security import AnonymousVerifier
from upload_broker.main import app
from upload_broker.services.notify import Notifier
from upload_broker.services.signing import SignatureEngine
from upload_broker.services.storage.base import ObjectStore
from upload_broker.services.storage.s3 import _get_client

TEST_SECRET = "test-secret"


class FakeObjectStore(ObjectStore):
    """In-memory stand-in for an S3-compatible store, including its multipart bookkeeping."""

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.objects: dict[str, dict] = {}
        self.uploads: dict[str, dict] = {}
        self.head_calls: list[str] = []
        self.head_delay = 0.0
        self.fail_with: str | None = None
        self._ids = itertools.count(1)

    # test helpers
    def put_object(self, key: str, scan_status: str | None = None, size: int = 10) -> None:
        metadata = {} if scan_status is None else {"scan-status": scan_status}
        self.objects[key] = {"content_length": size, "content_type": "application/pdf", "metadata": metadata}

    def upload_part(self, upload_id: str, part_number: int) -> str:
        etag = f'"etag-{upload_id}-{part_number}"'
        self.uploads[upload_id]["parts"][part_number] = etag
        return etag

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_with:
            raise UpstreamError(f"Object store rejected {operation} ({self.fail_with})", code=self.fail_with)

    # ObjectStore
    def head_object(self, key: str) -> dict:
        self.head_calls.append(key)
        if self.head_delay:
            time.sleep(self.head_delay)
        self._maybe_fail("head_object")
        if key not in self.objects:
            raise FileNotFoundError(f"Object not found: {key}")
        return self.objects[key]

    def create_multipart_upload(self, key: str, content_type: str, acl: str | None = None) -> str:
        self._maybe_fail("create_multipart_upload")
        upload_id = f"upload-{next(self._ids)}"
        self.uploads[upload_id] = {"key": key, "content_type": content_type, "acl": acl, "parts": {}, "state": "open"}
        return upload_id

    def complete_multipart_upload(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> dict:
        self._maybe_fail("complete_multipart_upload")
        session = self.uploads.get(upload_id)
        if session is None or session["key"] != key or session["state"] == "aborted":
            raise UpstreamError("Object store rejected complete_multipart_upload (NoSuchUpload)", code="NoSuchUpload")
        if session["state"] == "completed":
            return {"location": f"/{self.bucket}/{key}", "etag": '"final"'}
        for number, etag in parts:
            if session["parts"].get(number) != etag:
                raise UpstreamError("Object store rejected complete_multipart_upload (InvalidPart)", code="InvalidPart")
        session["state"] = "completed"
        session["completed_parts"] = list(parts)
        self.put_object(key)
        return {"location": f"/{self.bucket}/{key}", "etag": '"final"'}

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._maybe_fail("abort_multipart_upload")
        session = self.uploads.get(upload_id)
        if session is None or session["state"] != "open":
            raise UpstreamError("Object store rejected abort_multipart_upload (NoSuchUpload)", code="NoSuchUpload")
        session["state"] = "aborted"


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def engine() -> SignatureEngine:
    """Real botocore signer with test credentials. Signing is offline."""
    settings = get_settings()
    return SignatureEngine(
        _get_client(settings),
        settings.s3_bucket,
        default_expires=settings.presign_default_expires_seconds,
        max_expires=settings.presign_max_expires_seconds,
    )


@pytest.fixture
def limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(MemoryKeyValueStore(), limit=60, window_seconds=60)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(None)


@pytest.fixture
async def client(store, engine, limiter, notifier):
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_signature_engine] = lambda: engine
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_verifier] = lambda: AnonymousVerifier()
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


def _sigv4_matches(url: str, method: str, headers: dict[str, str] | None = None, secret: str = TEST_SECRET) -> bool:
    """Recompute a SigV4 query-string signature for `method` and compare with the URL's."""
    import hashlib
    import hmac
    from urllib.parse import unquote, urlsplit

    parts = urlsplit(url)
    pairs = [p.partition("=") for p in parts.query.split("&") if p]
    query = {k: v for k, _, v in pairs}
    signature = query.pop("X-Amz-Signature")
    canonical_query = "&".join(f"{k}={v}" for k, v in sorted(query.items()))
    header_values = {"host": parts.netloc, **{k.lower(): v for k, v in (headers or {}).items()}}
    signed_headers = unquote(query["X-Amz-SignedHeaders"]).split(";")
    canonical_headers = "".join(f"{h}:{header_values[h].strip()}\n" for h in signed_headers)
    canonical_request = "\n".join([
        method,
        parts.path,
        canonical_query,
        canonical_headers,
        ";".join(signed_headers),
        "UNSIGNED-PAYLOAD",
    ])
    amz_date = query["X-Amz-Date"]
    scope = unquote(query["X-Amz-Credential"]).split("/", 1)[1]
    date, region, service, _ = scope.split("/")
    string_to_sign = "\n".join([
        "AWS4-HMAC-SHA256",
        amz_date,
        scope,
        hashlib.sha256(canonical_request.encode()).hexdigest(),
    ])

    def _hmac(key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode(), hashlib.sha256).digest()

    key = _hmac(f"AWS4{secret}".encode(), date)
    for part in (region, service, "aws4_request"):
        key = _hmac(key, part)
    expected = hmac.new(key, string_to_sign.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


@pytest.fixture
def sigv4_matches():
    return _sigv4_matches
