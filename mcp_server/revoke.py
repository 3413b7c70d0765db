"""
Token revocation endpoint (POST /revoke). RFC 7009.
Unknown tokens are not an error; the response is 200 {} either way.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request

from mcp_server.client_auth import authenticate_client
from mcp_server.clients import ClientRegistry
from mcp_server.dependencies import get_clients, get_provider
from mcp_server.errors import InvalidRequestError
from mcp_server.provider import QuireProxyProvider

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/revoke")
async def revoke(
    request: Request,
    token: str | None = Form(None),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    clients: ClientRegistry = Depends(get_clients),
    provider: QuireProxyProvider = Depends(get_provider),
):
    """
    Revoke an access or refresh token.
    refresh_token hint → refresh store only; any other hint → access store only; no hint → both.
    """
    client = await authenticate_client(clients, request, client_id, client_secret)
    if not token or not token.strip():
        raise InvalidRequestError("token is required")

    hint = (token_type_hint or "").strip().lower() or None
    await provider.revoke_token(client, token.strip(), hint)
    return {}
