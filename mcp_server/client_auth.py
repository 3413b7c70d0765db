"""
Client authentication at /token and /revoke. RFC 6749 §2.3.1.
Credentials via Authorization: Basic base64(client_id:client_secret) or client_id + client_secret in form.
Public clients (token_endpoint_auth_method "none") send only client_id.
"""
import base64
import binascii
import logging
import time

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from mcp_server.clients import ClientInformation, ClientRegistry
from mcp_server.errors import InvalidClientError

logger = logging.getLogger(__name__)


def _parse_basic(header_value: str) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header_value.strip()[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    return client_id.strip(), client_secret


def get_client_credentials_from_request(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> tuple[str | None, str | None]:
    """
    Get (client_id, client_secret) from the form or from Authorization Basic.
    Form wins when it carries both values.
    """
    auth_header = request.headers.get("Authorization")
    basic = _parse_basic(auth_header) if auth_header else None
    if client_id_form and client_secret_form is not None:
        return client_id_form.strip(), client_secret_form
    if basic:
        return basic
    if client_id_form:
        return client_id_form.strip(), client_secret_form
    return None, None


async def authenticate_client(
    clients: ClientRegistry,
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> ClientInformation:
    """Resolve and authenticate the client or raise invalid_client (401)."""
    client_id, client_secret = get_client_credentials_from_request(request, client_id_form, client_secret_form)
    if not client_id:
        raise InvalidClientError("client_id is required")
    client = clients.get_client(client_id)
    if client is None:
        raise InvalidClientError("Invalid client_id")
    if client.is_public:
        return client

    if not client_secret:
        raise InvalidClientError("Client secret is required")
    # bcrypt is slow on purpose; keep it off the event loop
    if not await run_in_threadpool(clients.verify_client_secret, client_id, client_secret):
        logger.warning("Invalid client secret for client %s", client_id)
        raise InvalidClientError("Invalid client_secret")
    if client.client_secret_expires_at and client.client_secret_expires_at < int(time.time()):
        raise InvalidClientError("Client secret has expired")
    return client
