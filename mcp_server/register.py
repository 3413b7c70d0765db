"""
Dynamic client registration (POST /register). RFC 7591.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from mcp_server.clients import ClientMetadata, ClientRegistry
from mcp_server.dependencies import get_clients
from mcp_server.errors import InvalidClientMetadataError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/register")
async def register(request: Request, clients: ClientRegistry = Depends(get_clients)):
    """Register a client; returns 201 with client_id (and client_secret for confidential clients)."""
    try:
        body = await request.json()
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError
        raise InvalidClientMetadataError("Request body must be UTF-8 JSON") from None
    if not isinstance(body, dict):
        raise InvalidClientMetadataError("Request body must be a JSON object")

    try:
        metadata = ClientMetadata.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or "body"
        raise InvalidClientMetadataError(f"{field}: {first['msg']}") from None

    info = clients.register_client(metadata)
    return JSONResponse(
        info.model_dump(exclude_none=True),
        status_code=201,
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )
