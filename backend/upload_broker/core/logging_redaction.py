"""Redact sensitive data from structured logs. Never log credentials, bearer tokens or URL signatures."""
import re
from typing import Any

# Keys (case-insensitive) that must be redacted in dicts
REDACT_KEYS = frozenset({
    "password", "token", "secret", "authorization", "cookie",
    "access_token", "refresh_token", "jwt", "api_key", "access_key", "credential",
})

# Query parameters of a SigV4 presigned URL that grant access
_PRESIGN_PARAM_RE = re.compile(
    r"(X-Amz-(?:Signature|Credential|Security-Token)=)[^&\s]+",
    re.IGNORECASE,
)


def _redact_key(key: str) -> bool:
    k = key.lower()
    return any(r in k for r in REDACT_KEYS)


def redact_for_log(obj: Any) -> Any:
    """Return a copy of obj safe for logging: sensitive keys replaced with '[REDACTED]'."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if _redact_key(str(k)) else redact_for_log(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_for_log(x) for x in obj)
    if isinstance(obj, str):
        if _looks_like_secret(obj):
            return "[REDACTED]"
        return redact_presigned_url(obj)
    return obj


def redact_presigned_url(s: str) -> str:
    """Keep the URL readable (host, key, expiry) but drop signature and credential."""
    return _PRESIGN_PARAM_RE.sub(r"\1[REDACTED]", s)


def _looks_like_secret(s: str) -> bool:
    """Heuristic: long base64-like or bearer token."""
    if len(s) > 64 and re.match(r"^[A-Za-z0-9_-]+\.([A-Za-z0-9_-]+)\.", s):
        return True  # JWT-like
    if s.lower().startswith("bearer "):
        return True
    return False
