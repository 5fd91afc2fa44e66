"""Answer CORS preflight (OPTIONS) requests before any other middleware.

Preflights never reach rate limiting or session resolution. A disallowed
origin still gets 200 but without Access-Control-Allow-Origin, so the
browser blocks the real request.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

ALLOWED_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"


class CORSPreflightMiddleware(BaseHTTPMiddleware):
    """Respond to OPTIONS with 200 and CORS headers. Runs first (add last)."""

    def __init__(self, app, allow_origins: list[str], allow_credentials: bool = False):
        super().__init__(app)
        self._allow_origins = set(allow_origins)
        self._allow_all = "*" in self._allow_origins
        # Session cookies need credentials, which browsers refuse with "*"
        self._allow_credentials = allow_credentials and not self._allow_all

    def _allowed_origin(self, origin: str) -> str | None:
        if self._allow_all:
            return "*"
        if origin and origin.rstrip("/") in self._allow_origins:
            return origin
        return None

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method != "OPTIONS":
            return await call_next(request)

        headers = {"Vary": "Origin"}
        allow_origin = self._allowed_origin((request.headers.get("origin") or "").strip())
        if allow_origin is not None:
            headers.update(
                {
                    "Access-Control-Allow-Origin": allow_origin,
                    "Access-Control-Allow-Methods": ALLOWED_METHODS,
                    "Access-Control-Allow-Headers": request.headers.get(
                        "access-control-request-headers", "Content-Type"
                    ),
                    "Access-Control-Max-Age": "600",
                }
            )
            if self._allow_credentials:
                headers["Access-Control-Allow-Credentials"] = "true"
        return Response(status_code=200, headers=headers)
