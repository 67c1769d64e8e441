"""Broker error taxonomy and the uniform {error, message} JSON envelope."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BrokerError(Exception):
    """Base for errors rendered to the caller. message must be safe to expose."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "internal"

    def __init__(self, message: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.headers = headers


class ValidationError(BrokerError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "validation"


class Unauthorized(BrokerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthorized"


class ScanInfected(BrokerError):
    """Object failed the antivirus scan; permanent for this key."""

    status_code = status.HTTP_403_FORBIDDEN
    error = "infected"


class ScanPending(BrokerError):
    """Not a failure: the verdict is unknown yet and the caller should poll again."""

    status_code = status.HTTP_202_ACCEPTED
    error = "pending"


class RateLimited(BrokerError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "rate_limited"


class UpstreamError(BrokerError):
    """Object store rejected or failed a call. Provider detail stays in the logs."""

    error = "upstream"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RateLimitUnavailable(BrokerError):
    error = "rate_limit_unavailable"


class ConfigurationError(BrokerError):
    error = "configuration"


class RequestTimeout(BrokerError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error = "timeout"


def error_response(
    status_code: int, error: str, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message},
        headers=headers,
    )


def _validation_message(exc: RequestValidationError) -> str:
    """First offending field, e.g. 'key is required' or 'partNumber must be ...'."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    err_type = first.get("type", "")
    if err_type in ("json_invalid", "json_type"):
        return "Malformed JSON body"
    loc = [str(p) for p in first.get("loc", ()) if p != "body"]
    if not loc:
        if err_type == "missing":
            return "Request body is required"
        return "Request body must be a JSON object"
    field = ".".join(loc)
    if err_type == "missing":
        return f"{field} is required"
    msg = first.get("msg", "is invalid")
    # pydantic prefixes custom ValueError messages with "Value error, "
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return f"{field}: {msg}"


async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error, request.url.path, exc.message)
    return error_response(exc.status_code, exc.error, exc.message, exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, "validation", _validation_message(exc))


_HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    return error_response(exc.status_code, error, str(exc.detail), getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal", "Internal server error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BrokerError, broker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
