"""Antivirus gate for downloads. The scanner (ClamAV worker, S3 Object Lambda, ...) is external:
it tags objects with a scan-status metadata entry after upload; the broker only reads it."""
from __future__ import annotations

import enum
import logging

from starlette.concurrency import run_in_threadpool

from upload_broker.core.errors import ScanInfected, ScanPending
from upload_broker.core.metrics import record_scan_verdict
from upload_broker.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)

# x-amz-meta-scan-status; boto3 exposes user metadata without the prefix
SCAN_STATUS_METADATA_KEY = "scan-status"

_INFECTED_VALUES = frozenset({"infected", "quarantine", "quarantined"})


class ScanStatus(enum.Enum):
    CLEAN = "clean"
    INFECTED = "infected"
    PENDING = "pending"

    @classmethod
    def from_metadata(cls, value: str | None) -> "ScanStatus":
        """Absent or unrecognised values are PENDING: an unknown verdict never allows a download."""
        if value is None:
            return cls.PENDING
        normalized = value.strip().lower()
        if normalized == "clean":
            return cls.CLEAN
        if normalized in _INFECTED_VALUES:
            return cls.INFECTED
        if normalized != "pending":
            logger.warning("Unknown scan status %r treated as pending", value)
        return cls.PENDING


class ScanGate:
    """Reads the current verdict with a HEAD on every call. No caching: status changes between polls."""

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    async def status(self, key: str) -> ScanStatus:
        try:
            head = await run_in_threadpool(self.store.head_object, key)
        except FileNotFoundError:
            # Upload may still be in flight
            return ScanStatus.PENDING
        return ScanStatus.from_metadata(head.get("metadata", {}).get(SCAN_STATUS_METADATA_KEY))

    async def require_clean(self, key: str) -> None:
        """Return only when the object is CLEAN; otherwise raise the deny/defer error."""
        verdict = await self.status(key)
        record_scan_verdict(verdict.value)
        if verdict is ScanStatus.CLEAN:
            return
        if verdict is ScanStatus.INFECTED:
            logger.warning("Download refused for infected object %s", key)
            raise ScanInfected("File failed security scan")
        if verdict is ScanStatus.PENDING:
            raise ScanPending("Virus scan in progress")
        raise AssertionError(f"Unhandled scan status: {verdict}")
