"""
Pure ASGI middleware for the HTTP surface: security headers, no-cache on auth/MCP paths,
the CORS allowlist and per-IP rate limiting. Pure ASGI so /mcp streaming responses pass through untouched.
"""
import logging

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from mcp_server.cors import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    CORS_MAX_AGE,
    is_cors_allowed_path,
)
from mcp_server.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; script-src 'none'; object-src 'none'; frame-ancestors 'none'",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}

NO_CACHE_PREFIXES = ("/oauth", "/authorize", "/token", "/register", "/revoke", "/mcp")
RATE_LIMITED_PREFIXES = ("/oauth", "/mcp")


def _matches_prefix(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path == p or path.startswith(p + "/") for p in prefixes)


def get_client_ip(scope: Scope) -> str:
    client = scope.get("client")
    return client[0] if client else "unknown"


class SecurityHeadersMiddleware:
    """Adds security headers everywhere and no-cache headers on OAuth and MCP paths."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        no_cache = _matches_prefix(scope["path"], NO_CACHE_PREFIXES)

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in SECURITY_HEADERS.items():
                    headers.setdefault(name, value)
                if no_cache:
                    for name, value in NO_CACHE_HEADERS.items():
                        headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


class CORSAllowlistMiddleware:
    """
    Cross-origin requests are allowed only on the OAuth discovery/registration/token paths.
    Anything else carrying an Origin header is refused with 403.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")
        if not origin:
            await self.app(scope, receive, send)
            return

        path = scope["path"]
        if not is_cors_allowed_path(path):
            logger.warning("Rejected cross-origin request to %s from %s", path, origin)
            response = JSONResponse({"error": "Cross-origin requests not allowed"}, status_code=403)
            await response(scope, receive, send)
            return

        cors_headers = {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": CORS_ALLOWED_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOWED_HEADERS,
            "Access-Control-Max-Age": CORS_MAX_AGE,
            "Vary": "Origin",
        }
        if scope["method"] == "OPTIONS":
            await Response(status_code=204, headers=cors_headers)(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in cors_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)


class RateLimitMiddleware:
    def __init__(self, app: ASGIApp, limiter: SlidingWindowRateLimiter):
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not _matches_prefix(scope["path"], RATE_LIMITED_PREFIXES):
            await self.app(scope, receive, send)
            return

        client_ip = get_client_ip(scope)
        allowed, retry_after = self.limiter.check_and_consume(client_ip)
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", client_ip, scope["path"])
            response = JSONResponse(
                {"error": "Too many requests, please try again later"},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)
