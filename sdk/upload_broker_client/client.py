"""
Python client for the upload broker: presign PUT/GET, scan-status polling, single and multipart uploads.
Transient failures (network errors, 429, 5xx) are retried with exponential backoff; presigned PUTs go
straight to the object store, never through the broker.
"""
import logging
import mimetypes
import time
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

# Files at or above this size use the multipart flow
MULTIPART_THRESHOLD_BYTES = 100 * 1024 * 1024  # 100 MB
PART_SIZE_BYTES = 16 * 1024 * 1024  # S3 minimum is 5 MB for every part but the last

_RETRY_STATUS = frozenset({429, 500, 502, 503, 504})


class BrokerError(Exception):
    """Error envelope returned by the broker."""

    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(f"{status_code} {error}: {message}")
        self.status_code = status_code
        self.error = error
        self.message = message


class ScanPending(BrokerError):
    """Virus scan has not finished; ask again later."""


class ScanInfected(BrokerError):
    """Object failed the virus scan. Permanent for this key."""


class BrokerClient:
    """Client for the /s3 routes of an upload broker."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        max_retries: int = 5,
        multipart_threshold: int = MULTIPART_THRESHOLD_BYTES,
        part_size: int = PART_SIZE_BYTES,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_retries = max_retries
        self.multipart_threshold = multipart_threshold
        self.part_size = part_size
        self._transport = transport
        self._session: httpx.Client | None = None

    def _get_session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                base_url=self.base_url,
                timeout=60.0,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._session

    def _headers(self) -> dict:
        h = {"Content-Type": "application/json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    def _sleep(self, attempt: int) -> None:
        time.sleep((2**attempt) * 0.5 + (time.time() % 1) * 0.1)  # exponential backoff + jitter

    def _post(self, path: str, body: dict) -> httpx.Response:
        """POST to the broker, retrying network errors, 429 and 5xx. Returns the last response."""
        for attempt in range(self.max_retries):
            try:
                r = self._get_session().post(path, json=body, headers=self._headers())
            except httpx.TransportError:
                if attempt == self.max_retries - 1:
                    raise
                self._sleep(attempt)
                continue
            if r.status_code in _RETRY_STATUS and attempt < self.max_retries - 1:
                retry_after = r.headers.get("Retry-After")
                if retry_after and retry_after.isdigit():
                    time.sleep(int(retry_after))
                else:
                    self._sleep(attempt)
                continue
            return r
        raise RuntimeError("unreachable")

    def _call(self, path: str, body: dict) -> dict:
        r = self._post(path, body)
        if r.status_code == 200:
            return r.json()
        raise _error_from(r)

    # ----- Presign -----

    def presign_put(
        self,
        key: str,
        content_type: str,
        content_length: int | None = None,
        expires: int | None = None,
    ) -> dict:
        """Returns { url, key, bucket, contentType, expiresIn }."""
        body = {"key": key, "contentType": content_type}
        if content_length is not None:
            body["contentLength"] = content_length
        if expires is not None:
            body["expires"] = expires
        return self._call("/s3/presign-put", body)

    def presign_get(self, key: str, expires: int | None = None) -> dict:
        """Returns { url, key, expiresIn }. Raises ScanPending (202) or ScanInfected (403)."""
        body = {"key": key}
        if expires is not None:
            body["expires"] = expires
        return self._call("/s3/presign", body)

    def wait_for_download_url(
        self,
        key: str,
        expires: int | None = None,
        attempts: int = 30,
        interval: float = 2.0,
    ) -> dict:
        """Poll presign_get while the scan is pending. Re-raises the last ScanPending when attempts run out."""
        for attempt in range(attempts):
            try:
                return self.presign_get(key, expires=expires)
            except ScanPending:
                if attempt == attempts - 1:
                    raise
                time.sleep(interval)
        raise RuntimeError("unreachable")

    # ----- Upload -----

    def upload_file(
        self,
        path: str | Path,
        key: str | None = None,
        content_type: str | None = None,
    ) -> dict:
        """Upload a local file under key (defaults to the file name). Returns { key, parts }."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        key = key or path.name
        content_type = content_type or mimetypes.guess_type(str(path))[0] or "application/octet-stream"
        size = path.stat().st_size
        if size >= self.multipart_threshold:
            parts = self._upload_multipart(path, key, size, content_type)
            return {"key": key, "parts": parts}
        signed = self.presign_put(key, content_type, content_length=size or None)
        self._put_with_retry(signed["url"], path.read_bytes(), {"Content-Type": content_type})
        return {"key": key, "parts": 1}

    def _upload_multipart(self, path: Path, key: str, size: int, content_type: str) -> int:
        """create -> sign/PUT each part collecting ETags -> complete. Aborts the session on failure."""
        created = self._call("/s3/create", {"key": key, "contentType": content_type})
        upload_id = created["uploadId"]
        parts = []
        try:
            with path.open("rb") as f:
                part_number = 1
                while True:
                    chunk = f.read(self.part_size)
                    if not chunk:
                        break
                    signed = self._call(
                        "/s3/sign",
                        {"key": key, "uploadId": upload_id, "partNumber": part_number},
                    )
                    etag = self._put_with_retry(signed["url"], chunk)
                    if not etag:
                        raise ValueError(f"Object store returned no ETag for part {part_number}")
                    parts.append({"PartNumber": part_number, "ETag": etag})
                    part_number += 1
            if not parts:
                raise ValueError(f"File is empty: {path} ({size} bytes)")
            self._call("/s3/complete", {"key": key, "uploadId": upload_id, "parts": parts})
        except Exception:
            try:
                self.abort(key, upload_id)
            except (BrokerError, httpx.HTTPError) as abort_err:
                logger.warning("Abort of upload %s for %s failed: %s", upload_id, key, abort_err)
            raise
        return len(parts)

    def abort(self, key: str, upload_id: str) -> dict:
        return self._call("/s3/abort", {"key": key, "uploadId": upload_id})

    def _put_with_retry(self, url: str, body: bytes, headers: dict | None = None) -> str | None:
        """PUT bytes to a presigned URL. Returns the ETag header."""
        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                r = self._get_session().put(url, content=body, headers=headers or {})
                r.raise_for_status()
                return r.headers.get("ETag")
            except httpx.HTTPError as e:
                last_err = e
                if attempt == self.max_retries - 1:
                    raise
                self._sleep(attempt)
        if last_err:
            raise last_err
        return None

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "BrokerClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _error_from(r: httpx.Response) -> BrokerError:
    try:
        data = r.json()
    except ValueError:
        data = {}
    error = data.get("error", "http_error")
    message = data.get("message", r.text)
    if r.status_code == 202 and error == "pending":
        return ScanPending(r.status_code, error, message)
    if r.status_code == 403 and error == "infected":
        return ScanInfected(r.status_code, error, message)
    return BrokerError(r.status_code, error, message)
