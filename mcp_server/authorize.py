"""
Authorization endpoint (GET /authorize).
Validates client_id and redirect_uri, then hands off to the provider, which redirects to Quire.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from mcp_server.callback import append_query
from mcp_server.clients import ClientRegistry
from mcp_server.dependencies import get_clients, get_provider
from mcp_server.errors import InvalidClientError, InvalidRequestError
from mcp_server.provider import AuthorizationParams, QuireProxyProvider

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_CHALLENGE_METHODS = ("S256", "plain")


def _redirect_error(redirect_uri: str, error: str, error_description: str, state: str | None) -> RedirectResponse:
    params = {"error": error, "error_description": error_description}
    if state:
        params["state"] = state
    return RedirectResponse(url=append_query(redirect_uri, params), status_code=302)


@router.get("/authorize")
async def authorize_get(
    client_id: str | None = None,
    redirect_uri: str | None = None,
    response_type: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    clients: ClientRegistry = Depends(get_clients),
    provider: QuireProxyProvider = Depends(get_provider),
):
    """
    OAuth 2.1 authorization endpoint.
    Errors before redirect_uri is trusted are returned as JSON; after that they go back to the client.
    """
    if not client_id:
        raise InvalidRequestError("client_id is required")
    client = clients.get_client(client_id)
    if client is None:
        raise InvalidClientError("Invalid client_id", status_code=400)

    if redirect_uri is None:
        if len(client.redirect_uris) != 1:
            raise InvalidRequestError("redirect_uri must be specified when client has multiple registered URIs")
        redirect_uri = client.redirect_uris[0]
    elif redirect_uri not in client.redirect_uris:
        raise InvalidRequestError("Invalid redirect_uri")

    if response_type != "code":
        return _redirect_error(redirect_uri, "unsupported_response_type", "response_type must be 'code'", state)
    if not code_challenge:
        return _redirect_error(redirect_uri, "invalid_request", "code_challenge is required", state)
    method = code_challenge_method or "S256"
    if method not in SUPPORTED_CHALLENGE_METHODS:
        return _redirect_error(redirect_uri, "invalid_request", "code_challenge_method must be S256 or plain", state)

    params = AuthorizationParams(
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        code_challenge_method=method,
        scopes=scope.split() if scope else [],
        state=state,
    )
    upstream_url = await provider.authorize(client, params)
    return RedirectResponse(url=upstream_url, status_code=302)
