"""
Bearer token check for /mcp. Tokens are the opaque access tokens minted by the proxy;
the resulting AuthInfo carries the wrapped Quire token for the tool layer.
"""
import logging
import time

from starlette.datastructures import Headers
from starlette.responses import JSONResponse

from mcp_server.errors import InvalidTokenError, OAuthError
from mcp_server.provider import AuthInfo, QuireProxyProvider

logger = logging.getLogger(__name__)


def get_bearer_token(headers: Headers) -> str:
    """Extract the Bearer token from Authorization. Raises InvalidTokenError if missing or not Bearer."""
    header = headers.get("authorization")
    if not header:
        raise InvalidTokenError("Missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidTokenError("Invalid Authorization header format, expected 'Bearer TOKEN'")
    return token.strip()


async def authenticate_bearer(headers: Headers, provider: QuireProxyProvider) -> AuthInfo:
    auth = await provider.verify_access_token(get_bearer_token(headers))
    if auth.expires_at is not None and auth.expires_at < time.time():
        raise InvalidTokenError("Token has expired")
    return auth


def unauthorized_response(error: OAuthError, resource_metadata_url: str) -> JSONResponse:
    """401 pointing the client at the protected resource metadata so it can start the OAuth flow."""
    challenge = (
        f'Bearer error="{error.error}", error_description="{error.error_description}", '
        f'resource_metadata="{resource_metadata_url}"'
    )
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers={"WWW-Authenticate": challenge})
