"""Caller verification: anonymous (default) or Bearer JWT.

The broker does not issue tokens; it only checks tokens minted by the
identity provider in front of it and uses the subject as the rate-limit identity.
"""
from typing import Protocol

from jose import JWTError, jwt

from upload_broker.core.config import Settings
from upload_broker.core.errors import Unauthorized


class AuthVerifier(Protocol):
    def verify(self, authorization: str | None) -> str | None:
        """Return the caller subject, None for anonymous, or raise Unauthorized."""
        ...


class AnonymousVerifier:
    """Anonymous access permitted; callers are identified by network origin."""

    def verify(self, authorization: str | None) -> str | None:
        return None


class JwtVerifier:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.issuer = issuer

    def verify(self, authorization: str | None) -> str | None:
        if not authorization:
            raise Unauthorized("Missing bearer token")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthorized("Missing bearer token")
        try:
            payload = jwt.decode(
                token.strip(),
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError:
            raise Unauthorized("Invalid or expired token")
        sub = payload.get("sub")
        if not sub:
            raise Unauthorized("Token has no subject")
        return str(sub)


def create_verifier(settings: Settings) -> AuthVerifier:
    if settings.auth_mode == "jwt":
        return JwtVerifier(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    return AnonymousVerifier()
