"""
Quire MCP HTTP server.
OAuth 2.1 proxy in front of Quire (/authorize, /token, /register, /revoke, /oauth/callback,
discovery metadata) plus the bearer-protected Streamable HTTP MCP endpoint at /mcp.
"""
import logging
import sys
from contextlib import asynccontextmanager

import anyio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from mcp.types import INTERNAL_ERROR
from starlette.middleware.trustedhost import TrustedHostMiddleware

from mcp_server.authorize import router as authorize_router
from mcp_server.callback import router as callback_router
from mcp_server.clients import ClientRegistry
from mcp_server.config import (
    CLEANUP_INTERVAL_SECONDS,
    LOG_LEVEL,
    SHUTDOWN_GRACE_SECONDS,
    HttpServerConfig,
    get_http_server_config,
)
from mcp_server.errors import OAuthError
from mcp_server.mcp_endpoint import McpEndpoint
from mcp_server.middleware import CORSAllowlistMiddleware, RateLimitMiddleware, SecurityHeadersMiddleware
from mcp_server.provider import QuireProxyProvider
from mcp_server.rate_limit import SlidingWindowRateLimiter
from mcp_server.register import router as register_router
from mcp_server.revoke import router as revoke_router
from mcp_server.sessions import SessionManager
from mcp_server.token_cache import TokenCacheFile
from mcp_server.token_endpoint import router as token_router
from mcp_server.token_store import TokenStore
from mcp_server.tools import session_server_factory
from mcp_server.upstream import QuireTokenClient
from mcp_server.well_known import router as well_known_router

logger = logging.getLogger(__name__)


def run_maintenance(app: FastAPI) -> None:
    """One pass of background cleanup: expired tokens, idle sessions, stale rate-limit buckets."""
    removed = app.state.token_store.cleanup()
    closed = app.state.session_manager.sweep_idle()
    pruned = app.state.rate_limiter.prune()
    if removed or closed or pruned:
        logger.info(
            "Maintenance: %d expired token entries, %d idle sessions, %d rate-limit buckets removed",
            removed, closed, pruned,
        )


async def _maintenance_loop(app: FastAPI) -> None:
    while True:
        await anyio.sleep(CLEANUP_INTERVAL_SECONDS)
        try:
            run_maintenance(app)
        except Exception:
            logger.exception("Maintenance pass failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the session task group and the maintenance timer for the app's lifetime."""
    async with app.state.session_manager.run():
        async with anyio.create_task_group() as tg:
            tg.start_soon(_maintenance_loop, app)
            try:
                yield
            finally:
                logger.info("Shutting down: stopping maintenance timer and closing sessions")
                tg.cancel_scope.cancel()


def create_app(
    config: HttpServerConfig,
    token_store: TokenStore | None = None,
    clients: ClientRegistry | None = None,
    upstream: QuireTokenClient | None = None,
    session_manager: SessionManager | None = None,
    rate_limiter: SlidingWindowRateLimiter | None = None,
    token_cache: TokenCacheFile | None = None,
) -> FastAPI:
    token_store = token_store or TokenStore()
    clients = clients or ClientRegistry()
    upstream = upstream or QuireTokenClient(config.quire_client_id, config.quire_client_secret)
    if token_cache is None and config.token_store_path is not None:
        token_cache = TokenCacheFile(config.token_store_path)
    provider = QuireProxyProvider(config, token_store, upstream, token_cache)
    session_manager = session_manager or SessionManager(session_server_factory)
    rate_limiter = rate_limiter or SlidingWindowRateLimiter()

    app = FastAPI(title="Quire MCP Server", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.token_store = token_store
    app.state.clients = clients
    app.state.provider = provider
    app.state.session_manager = session_manager
    app.state.rate_limiter = rate_limiter

    app.include_router(well_known_router, tags=["well-known"])
    app.include_router(authorize_router, tags=["authorize"])
    app.include_router(token_router, tags=["token"])
    app.include_router(register_router, tags=["register"])
    app.include_router(revoke_router, tags=["revoke"])
    app.include_router(callback_router, tags=["callback"])
    # Plain ASGI route: no redirect from /mcp to /mcp/, transport writes the response itself
    app.add_route(
        "/mcp",
        McpEndpoint(provider, session_manager, config.resource_metadata_url),
        methods=["GET", "POST", "DELETE"],
    )

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers={"Cache-Control": "no-store"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"jsonrpc": "2.0", "error": {"code": INTERNAL_ERROR, "message": "Internal server error"}, "id": None},
            status_code=500,
        )

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "quire-mcp"}

    # Last added runs first: security headers wrap everything
    if config.allowed_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(config.allowed_hosts))
    app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
    app.add_middleware(CORSAllowlistMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    return app


def main() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        config = get_http_server_config()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)
    if config is None:
        logger.error("QUIRE_OAUTH_CLIENT_ID and QUIRE_OAUTH_CLIENT_SECRET must be set for HTTP mode")
        sys.exit(1)

    app = create_app(config)
    logger.info("Quire MCP server listening on http://%s:%d", config.host, config.port)
    logger.info("  MCP endpoint:   %s/mcp", config.issuer_url)
    logger.info("  OAuth metadata: %s/.well-known/oauth-authorization-server", config.issuer_url)
    logger.info("  Quire callback: %s", config.quire_redirect_uri)

    import uvicorn
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=LOG_LEVEL.lower(),
        timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS,
    )


if __name__ == "__main__":
    main()
