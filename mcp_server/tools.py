"""
MCP tools exposed over /mcp. Each call uses the Quire token wrapped by the
caller's local access token (scope["auth"], set by the /mcp endpoint).
"""
import logging
from typing import Any, Callable

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.lowlevel import Server

from mcp_server.config import RESOURCE_NAME
from mcp_server.provider import AuthInfo
from mcp_server.quire_client import QuireClient

logger = logging.getLogger(__name__)


def get_upstream_token(ctx: Context) -> str:
    request = ctx.request_context.request
    auth = request.scope.get("auth") if request is not None else None
    if not isinstance(auth, AuthInfo):
        raise ValueError("Not authenticated: no Quire token for this request")
    return auth.upstream_token


def create_mcp_server(client_factory: Callable[[str], QuireClient] = QuireClient) -> FastMCP:
    mcp = FastMCP(RESOURCE_NAME)

    @mcp.tool()
    async def whoami(ctx: Context) -> dict[str, Any]:
        """Return the Quire user the current session is authorized as."""
        return await client_factory(get_upstream_token(ctx)).get_me()

    @mcp.tool()
    async def list_projects(ctx: Context) -> list[dict[str, Any]]:
        """List the Quire projects the current user can access."""
        return await client_factory(get_upstream_token(ctx)).list_projects()

    return mcp


def session_server_factory() -> Server:
    """Fresh low-level server per session, as the session manager expects."""
    return create_mcp_server()._mcp_server
