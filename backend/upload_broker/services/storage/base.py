"""Object store interface: HEAD and the multipart lifecycle calls the broker forwards.

Presigning is not here: it needs no network and lives in services.signing.
"""
from abc import ABC, abstractmethod


class ObjectStore(ABC):
    """Blocking object-store calls. Callers run these in a thread pool."""

    bucket: str

    @abstractmethod
    def head_object(self, key: str) -> dict:
        """Return content_length (int), content_type (str | None), metadata (dict, lowercase keys).
        Raise FileNotFoundError if missing."""
        ...

    @abstractmethod
    def create_multipart_upload(self, key: str, content_type: str, acl: str | None = None) -> str:
        """Start a multipart session and return its upload id."""
        ...

    @abstractmethod
    def complete_multipart_upload(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> dict:
        """Stitch (part_number, etag) pairs into the final object. Returns location/etag when known."""
        ...

    @abstractmethod
    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Discard all uploaded parts of the session."""
        ...
