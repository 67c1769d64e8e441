"""CORS for browser upload widgets: OPTIONS short-circuits before auth, rate limit and routing."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"
MAX_AGE = "86400"


class CORSMiddleware(BaseHTTPMiddleware):
    """Answer every OPTIONS with 204 + CORS headers; add Allow-Origin to all other responses.

    Unlike starlette's CORSMiddleware this also answers bare OPTIONS requests that carry
    no Origin / Access-Control-Request-Method, which some upload clients send.
    """

    def __init__(self, app, allow_origins: list[str]) -> None:
        super().__init__(app)
        self.allow_all = "*" in allow_origins
        self.allow_origins = frozenset(allow_origins)

    def _origin_headers(self, request: Request) -> dict[str, str]:
        if self.allow_all:
            return {"Access-Control-Allow-Origin": "*"}
        origin = request.headers.get("origin")
        if origin and origin in self.allow_origins:
            return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
        return {"Vary": "Origin"}

    async def dispatch(self, request: Request, call_next):
        headers = self._origin_headers(request)
        if request.method == "OPTIONS":
            headers.update({
                "Access-Control-Allow-Methods": ALLOW_METHODS,
                "Access-Control-Allow-Headers": ALLOW_HEADERS,
                "Access-Control-Max-Age": MAX_AGE,
            })
            return Response(status_code=204, headers=headers)
        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
