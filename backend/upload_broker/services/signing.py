"""Signature engine: SigV4 query-string presigned URLs for GET, PUT and multipart part PUT.

botocore signs locally; nothing here touches the network. The HTTP method is part
of the signed canonical request, so a PUT URL cannot be replayed as a GET.
"""
from __future__ import annotations

from dataclasses import dataclass

from upload_broker.core.errors import ConfigurationError, ValidationError

MAX_KEY_BYTES = 1024  # S3 object key limit
MAX_PART_NUMBER = 10000

_OPERATIONS = {"GET": "get_object", "PUT": "put_object"}


@dataclass(frozen=True)
class PresignedRequest:
    url: str
    method: str
    key: str
    expires_in: int


def validate_key(key: str | None) -> str:
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("key is required")
    if len(key.encode("utf-8")) > MAX_KEY_BYTES:
        raise ValidationError(f"key must be at most {MAX_KEY_BYTES} bytes")
    return key


class SignatureEngine:
    """Presigns requests against one bucket with the process-wide credentials."""

    def __init__(self, client, bucket: str, default_expires: int = 300, max_expires: int = 3600) -> None:
        if client is None or not bucket:
            raise ConfigurationError("Signature engine requires an object store client and bucket")
        self._client = client
        self.bucket = bucket
        self.default_expires = default_expires
        self.max_expires = max_expires

    def resolve_expiry(self, expires_in: int | None) -> int:
        if expires_in is None:
            return self.default_expires
        if isinstance(expires_in, bool) or not isinstance(expires_in, int) or not 0 < expires_in <= self.max_expires:
            raise ValidationError(f"expires must be an integer between 1 and {self.max_expires}")
        return expires_in

    def presign(
        self,
        method: str,
        key: str,
        *,
        content_type: str | None = None,
        content_length: int | None = None,
        expires_in: int | None = None,
        upload_id: str | None = None,
        part_number: int | None = None,
    ) -> PresignedRequest:
        method = method.upper()
        if method not in _OPERATIONS:
            raise ValidationError(f"Unsupported method: {method}")
        key = validate_key(key)
        expires = self.resolve_expiry(expires_in)
        params: dict = {"Bucket": self.bucket, "Key": key}
        operation = _OPERATIONS[method]
        if upload_id is not None or part_number is not None:
            if method != "PUT":
                raise ValidationError("Part uploads must use PUT")
            if not upload_id:
                raise ValidationError("uploadId is required")
            if part_number is None or not 0 < part_number <= MAX_PART_NUMBER:
                raise ValidationError(f"partNumber must be an integer between 1 and {MAX_PART_NUMBER}")
            operation = "upload_part"
            params["UploadId"] = upload_id
            params["PartNumber"] = part_number
        elif method == "PUT":
            if content_type:
                params["ContentType"] = content_type
            if content_length is not None:
                params["ContentLength"] = content_length
        url = self._client.generate_presigned_url(
            operation,
            Params=params,
            ExpiresIn=expires,
            HttpMethod=method,
        )
        return PresignedRequest(url=url, method=method, key=key, expires_in=expires)
