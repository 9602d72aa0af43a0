"""
CORS Middleware for the browser-facing endpoints.

The site's opportunity widget reads GET /opportunities and the signup flow
posts to /track/signup from the browser; everything else is server to server
and never needs CORS. Only origins in CORS_ALLOWED_ORIGINS get the headers,
and no credentials are ever allowed.

Headers added:
- Access-Control-Allow-Origin
- Access-Control-Allow-Methods / -Headers / -Max-Age (preflight only)
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

BROWSER_PATHS = ("/opportunities", "/track/signup")


class CORSMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        allowed_origins: list[str] | None = None,
        allow_methods: list[str] | None = None,
        allow_headers: list[str] | None = None,
        max_age: int = 600,
        paths: tuple[str, ...] = BROWSER_PATHS,
    ):
        super().__init__(app)
        self.allowed_origins = [o.rstrip("/") for o in (allowed_origins or [])]
        self.allow_methods = allow_methods or ["GET", "POST", "OPTIONS"]
        self.allow_headers = allow_headers or ["Accept", "Content-Type", "X-Request-ID"]
        self.max_age = max_age
        self.paths = paths

        logger.info("CORS middleware initialized", allowed_origins=self.allowed_origins)

    async def dispatch(self, request, call_next):
        origin = request.headers.get("origin")
        if not origin or not request.url.path.startswith(self.paths):
            return await call_next(request)

        is_allowed_origin = origin.rstrip("/") in self.allowed_origins

        if request.method == "OPTIONS" and request.headers.get("access-control-request-method"):
            if not is_allowed_origin:
                logger.warning("CORS preflight rejected - origin not allowed", origin=origin)
                return Response(status_code=403, content="Origin not allowed")
            return Response(
                status_code=204,
                headers={
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Methods": ", ".join(self.allow_methods),
                    "Access-Control-Allow-Headers": ", ".join(self.allow_headers),
                    "Access-Control-Max-Age": str(self.max_age),
                    "Vary": "Origin",
                },
            )

        response = await call_next(request)
        if is_allowed_origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        else:
            logger.warning("CORS request from disallowed origin", origin=origin, path=request.url.path)
        return response
