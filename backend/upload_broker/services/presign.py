"""Single-shot upload (PUT) and download (GET) presigning."""
from __future__ import annotations

import logging

from upload_broker.core.errors import ValidationError
from upload_broker.core.metrics import record_presign_mint
from upload_broker.services.av_scan import ScanGate
from upload_broker.services.signing import SignatureEngine, validate_key

logger = logging.getLogger(__name__)


class PresignService:
    def __init__(self, engine: SignatureEngine, gate: ScanGate, max_upload_bytes: int) -> None:
        self.engine = engine
        self.gate = gate
        self.max_upload_bytes = max_upload_bytes

    def presign_put(
        self,
        key: str,
        content_type: str,
        content_length: int | None = None,
        expires_in: int | None = None,
    ) -> dict:
        """Return {url, key, bucket, contentType, expiresIn}. Declared length, if any, is signed in."""
        key = validate_key(key)
        if not isinstance(content_type, str) or not content_type.strip():
            raise ValidationError("contentType is required")
        if content_length is not None and not 0 < content_length <= self.max_upload_bytes:
            raise ValidationError(f"contentLength must be between 1 and {self.max_upload_bytes}")
        signed = self.engine.presign(
            "PUT",
            key,
            content_type=content_type,
            content_length=content_length,
            expires_in=expires_in,
        )
        record_presign_mint("put")
        logger.info("Presigned PUT for %s (%s)", key, content_type)
        return {
            "url": signed.url,
            "key": signed.key,
            "bucket": self.engine.bucket,
            "content_type": content_type,
            "expires_in": signed.expires_in,
        }

    async def presign_get(self, key: str, expires_in: int | None = None) -> dict:
        """Return {url, key, expiresIn} for a CLEAN object; the gate raises for infected/pending."""
        key = validate_key(key)
        # Reject a bad expiry before the HEAD round trip
        self.engine.resolve_expiry(expires_in)
        await self.gate.require_clean(key)
        signed = self.engine.presign("GET", key, expires_in=expires_in)
        record_presign_mint("get")
        return {"url": signed.url, "key": signed.key, "expires_in": signed.expires_in}
