"""Storage backend factory. One S3-compatible store per process, built from settings."""
from functools import lru_cache

from upload_broker.services.storage.base import ObjectStore
from upload_broker.services.storage.s3 import S3Storage, _get_client


@lru_cache
def get_s3_client():
    """Shared boto3 client. Clients are thread-safe, so store calls in the thread pool reuse it."""
    return _get_client()


def get_storage() -> ObjectStore:
    """Return the configured object store."""
    return S3Storage(client=get_s3_client())
