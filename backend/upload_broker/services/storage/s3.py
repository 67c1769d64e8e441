"""S3-compatible backend (R2, MinIO, AWS): head and multipart calls via boto3."""
from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from upload_broker.core.config import Settings, get_settings
from upload_broker.core.errors import ConfigurationError, UpstreamError
from upload_broker.core.metrics import record_upstream_error
from upload_broker.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _get_client(settings: Settings | None = None):
    """boto3 S3 client for the configured endpoint. Shared by the store and the signature engine."""
    import boto3
    from botocore.config import Config

    settings = settings or get_settings()
    missing = [
        name
        for name in ("s3_endpoint", "s3_bucket", "s3_access_key_id", "s3_secret_access_key")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigurationError(f"Object store is not configured ({', '.join(missing)})")
    config = Config(
        signature_version="s3v4",
        s3={"addressing_style": "path" if settings.s3_force_path_style else "virtual"},
        connect_timeout=settings.s3_connect_timeout_seconds,
        read_timeout=settings.s3_read_timeout_seconds,
        # The broker never retries on the caller's behalf
        retries={"total_max_attempts": 1},
    )
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint,
        region_name=settings.s3_region,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        config=config,
    )


def error_code(exc: Exception) -> str | None:
    resp = getattr(exc, "response", None)
    if isinstance(resp, dict):
        return resp.get("Error", {}).get("Code")
    return None


def _upstream(operation: str, key: str, exc: Exception) -> UpstreamError:
    code = error_code(exc)
    record_upstream_error(operation)
    # Provider message can echo request details; only the code leaves the process
    logger.warning("Object store %s failed for %s: %s", operation, key, exc)
    message = f"Object store rejected {operation}" + (f" ({code})" if code else "")
    return UpstreamError(message, code=code)


class S3Storage(ObjectStore):
    """S3 backend: HeadObject plus Create/Complete/AbortMultipartUpload."""

    def __init__(self, client=None, bucket: str | None = None) -> None:
        settings = get_settings()
        self.bucket = bucket or settings.s3_bucket
        if not self.bucket:
            raise ConfigurationError("Object store is not configured (s3_bucket)")
        self._client = client if client is not None else _get_client(settings)

    def head_object(self, key: str) -> dict:
        try:
            resp = self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if error_code(e) in _NOT_FOUND_CODES:
                raise FileNotFoundError(f"Object not found: {key}") from e
            raise _upstream("head_object", key, e) from e
        except BotoCoreError as e:
            raise _upstream("head_object", key, e) from e
        return {
            "content_length": resp.get("ContentLength") or 0,
            "content_type": resp.get("ContentType"),
            "metadata": {k.lower(): v for k, v in (resp.get("Metadata") or {}).items()},
        }

    def create_multipart_upload(self, key: str, content_type: str, acl: str | None = None) -> str:
        params = {"Bucket": self.bucket, "Key": key, "ContentType": content_type}
        if acl:
            params["ACL"] = acl
        try:
            resp = self._client.create_multipart_upload(**params)
        except (ClientError, BotoCoreError) as e:
            raise _upstream("create_multipart_upload", key, e) from e
        upload_id = resp.get("UploadId")
        if not upload_id:
            record_upstream_error("create_multipart_upload")
            raise UpstreamError("Object store returned no upload id")
        return upload_id

    def complete_multipart_upload(self, key: str, upload_id: str, parts: list[tuple[int, str]]) -> dict:
        try:
            resp = self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"PartNumber": number, "ETag": etag} for number, etag in parts],
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise _upstream("complete_multipart_upload", key, e) from e
        return {"location": resp.get("Location"), "etag": resp.get("ETag")}

    def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        try:
            self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except (ClientError, BotoCoreError) as e:
            raise _upstream("abort_multipart_upload", key, e) from e
