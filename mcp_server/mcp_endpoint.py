"""
/mcp endpoint (POST, GET, DELETE). Raw ASGI so the Streamable HTTP transport owns the response.
Authenticates the bearer token, exposes AuthInfo as scope["auth"], then hands off to the session manager.
"""
import logging

from starlette.datastructures import Headers
from starlette.types import Receive, Scope, Send

from mcp_server.bearer import authenticate_bearer, unauthorized_response
from mcp_server.errors import OAuthError
from mcp_server.provider import QuireProxyProvider
from mcp_server.sessions import SessionManager

logger = logging.getLogger(__name__)


class McpEndpoint:
    def __init__(self, provider: QuireProxyProvider, session_manager: SessionManager, resource_metadata_url: str):
        self.provider = provider
        self.session_manager = session_manager
        self.resource_metadata_url = resource_metadata_url

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            auth = await authenticate_bearer(Headers(scope=scope), self.provider)
        except OAuthError as e:
            logger.info("Rejected /mcp request: %s", e.error_description)
            await unauthorized_response(e, self.resource_metadata_url)(scope, receive, send)
            return

        scope["auth"] = auth
        await self.session_manager.handle_request(scope, receive, send)
