"""
Token endpoint (POST /token). authorization_code (with PKCE) and refresh_token grants.
Tokens are minted by the proxy provider and wrap the Quire tokens.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from mcp_server.client_auth import authenticate_client
from mcp_server.clients import ClientInformation, ClientRegistry
from mcp_server.dependencies import get_clients, get_provider
from mcp_server.errors import InvalidGrantError, InvalidRequestError, UnsupportedGrantTypeError
from mcp_server.provider import QuireProxyProvider
from mcp_server.token_store import verify_pkce_challenge

logger = logging.getLogger(__name__)
router = APIRouter()

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@router.post("/token")
async def token(
    request: Request,
    grant_type: str = Form(...),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    scope: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    clients: ClientRegistry = Depends(get_clients),
    provider: QuireProxyProvider = Depends(get_provider),
):
    """
    authorization_code: verify PKCE against the stored challenge, then exchange the local code.
    refresh_token: refresh upstream and mint a new local token pair.
    """
    client = await authenticate_client(clients, request, client_id, client_secret)

    if grant_type == "authorization_code":
        tokens = await _token_authorization_code(provider, client, code, code_verifier, redirect_uri)
    elif grant_type == "refresh_token":
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required for refresh_token grant")
        tokens = await provider.exchange_refresh_token(client, refresh_token, scope.split() if scope else None)
    else:
        raise UnsupportedGrantTypeError("Only authorization_code and refresh_token are supported")
    return JSONResponse(tokens, headers=NO_STORE_HEADERS)


async def _token_authorization_code(
    provider: QuireProxyProvider,
    client: ClientInformation,
    code: str | None,
    code_verifier: str | None,
    redirect_uri: str | None,
) -> dict:
    if not code or not code_verifier:
        raise InvalidRequestError("code and code_verifier are required for authorization_code grant")

    challenge = await provider.challenge_for_authorization_code(client, code)
    method = await provider.challenge_method_for_authorization_code(client, code)
    if not verify_pkce_challenge(code_verifier, challenge, method):
        logger.warning("PKCE verification failed for client %s", client.client_id)
        raise InvalidGrantError("code_verifier does not match the challenge")

    return await provider.exchange_authorization_code(client, code, code_verifier, redirect_uri)
