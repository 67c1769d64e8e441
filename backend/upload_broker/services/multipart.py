"""Multipart upload lifecycle: create -> sign parts -> complete | abort.

The store owns session state; the broker keeps no record of upload ids or parts,
so a retried complete/abort against the same uploadId is simply forwarded again.
"""
from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool

from upload_broker.core.errors import UpstreamError, ValidationError
from upload_broker.core.metrics import record_presign_mint
from upload_broker.services.signing import MAX_PART_NUMBER, SignatureEngine, validate_key
from upload_broker.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)

# Store answers for a session that was already aborted or completed
_GONE_UPLOAD_CODES = frozenset({"NoSuchUpload", "404"})


def _require_upload_id(upload_id: str | None) -> str:
    if not isinstance(upload_id, str) or not upload_id.strip():
        raise ValidationError("uploadId is required")
    return upload_id


def _require_part_number(part_number: int | None, field: str = "partNumber") -> int:
    if isinstance(part_number, bool) or not isinstance(part_number, int) or not 0 < part_number <= MAX_PART_NUMBER:
        raise ValidationError(f"{field} must be an integer between 1 and {MAX_PART_NUMBER}")
    return part_number


def normalize_parts(parts: list[tuple[int, str]]) -> list[tuple[int, str]]:
    """Non-empty, unique positive part numbers, non-empty ETags; returned in ascending order."""
    if not parts:
        raise ValidationError("parts must be a non-empty array")
    seen: set[int] = set()
    for i, (number, etag) in enumerate(parts):
        _require_part_number(number, f"parts.{i}.PartNumber")
        if not isinstance(etag, str) or not etag.strip():
            raise ValidationError(f"parts.{i}.ETag is required")
        if number in seen:
            raise ValidationError(f"parts.{i}.PartNumber {number} is duplicated")
        seen.add(number)
    return sorted(parts, key=lambda p: p[0])


class MultipartCoordinator:
    def __init__(self, store: ObjectStore, engine: SignatureEngine) -> None:
        self.store = store
        self.engine = engine

    async def create(self, key: str, content_type: str, acl: str | None = None) -> dict:
        key = validate_key(key)
        if not isinstance(content_type, str) or not content_type.strip():
            raise ValidationError("contentType is required")
        upload_id = await run_in_threadpool(self.store.create_multipart_upload, key, content_type, acl)
        logger.info("Multipart upload created for %s", key)
        return {"upload_id": upload_id, "key": key, "bucket": self.store.bucket}

    def sign_part(self, key: str, upload_id: str, part_number: int, expires_in: int | None = None) -> dict:
        """Presign one part PUT. Whether the session is still open is the store's call, not ours."""
        key = validate_key(key)
        upload_id = _require_upload_id(upload_id)
        part_number = _require_part_number(part_number)
        signed = self.engine.presign(
            "PUT",
            key,
            upload_id=upload_id,
            part_number=part_number,
            expires_in=expires_in,
        )
        record_presign_mint("part")
        return {"url": signed.url, "part_number": part_number, "expires_in": signed.expires_in}

    async def complete(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> dict:
        """Forward completion. ETag mismatch or missing parts surface as UpstreamError; never retried here."""
        key = validate_key(key)
        upload_id = _require_upload_id(upload_id)
        ordered = normalize_parts(parts)
        result = await run_in_threadpool(self.store.complete_multipart_upload, key, upload_id, ordered)
        logger.info("Multipart upload completed for %s (%d parts)", key, len(ordered))
        return {"ok": True, "key": key, "location": result.get("location")}

    async def abort(self, key: str, upload_id: str) -> dict:
        """Idempotent: a session that is already gone is logged at WARNING and reported as aborted."""
        key = validate_key(key)
        upload_id = _require_upload_id(upload_id)
        try:
            await run_in_threadpool(self.store.abort_multipart_upload, key, upload_id)
        except UpstreamError as e:
            if e.code not in _GONE_UPLOAD_CODES:
                raise
            logger.warning("Abort for %s: upload %s already aborted or completed", key, upload_id)
            return {"ok": True}
        logger.info("Multipart upload aborted for %s", key)
        return {"ok": True}
