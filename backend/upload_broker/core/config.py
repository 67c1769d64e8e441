"""Application settings."""
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Broker config from env. Object-store connection fields are required."""

    app_name: str = "Upload Broker"
    debug: bool = False
    # Structured logging: set LOG_JSON=1 for one-JSON-object-per-line (CloudWatch, etc.)
    log_json: bool = False
    # If set, /metrics requires X-Metrics-Secret header with this value
    metrics_secret: str | None = None

    # S3-compatible object store (R2, MinIO, AWS). No defaults: missing values fail at startup.
    s3_endpoint: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_region: str = "auto"
    s3_force_path_style: bool = True
    s3_connect_timeout_seconds: float = 3.0
    s3_read_timeout_seconds: float = 8.0

    # Presigned URL TTLs (seconds)
    presign_default_expires_seconds: int = 300
    presign_max_expires_seconds: int = 3600
    upload_max_bytes: int = 5 * 1024 * 1024 * 1024

    # Rate limit (sliding window per client identity)
    rate_limit_requests_per_window: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_backend: str = "memory"  # memory | redis
    redis_url: str | None = None
    # Header set by the edge proxy (Cloudflare, ALB); never a client-chosen header.
    # Any caller can send it, so set TRUSTED_CLIENT_IP_HEADER= (empty) when no such proxy
    # strips and rewrites it; identity then falls back to the socket peer.
    trusted_client_ip_header: str | None = "cf-connecting-ip"

    # Whole-request budget, covers KV round trip and store calls
    request_timeout_seconds: float = 10.0

    # CORS: "*" or comma-separated allowlist
    cors_origins: str = "*"

    # Auth: none (anonymous allowed) | jwt (Bearer token required)
    auth_mode: str = "none"
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None
    jwt_issuer: str | None = None

    # Best-effort chat webhook (Mattermost/Slack incoming webhook)
    notify_webhook_url: str | None = None
    notify_timeout_seconds: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("trusted_client_ip_header")
    @classmethod
    def _empty_header_means_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.presign_default_expires_seconds <= 0:
            raise ValueError("presign_default_expires_seconds must be positive")
        if self.presign_default_expires_seconds > self.presign_max_expires_seconds:
            raise ValueError("presign_default_expires_seconds exceeds presign_max_expires_seconds")
        if self.rate_limit_requests_per_window <= 0 or self.rate_limit_window_seconds <= 0:
            raise ValueError("rate limit window and limit must be positive")
        if self.rate_limit_backend not in ("memory", "redis"):
            raise ValueError(f"Unknown rate_limit_backend: {self.rate_limit_backend}")
        if self.rate_limit_backend == "redis" and not self.redis_url:
            raise ValueError("rate_limit_backend=redis requires redis_url")
        if self.auth_mode not in ("none", "jwt"):
            raise ValueError(f"Unknown auth_mode: {self.auth_mode}")
        if self.auth_mode == "jwt" and not self.jwt_secret:
            raise ValueError("auth_mode=jwt requires jwt_secret")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
