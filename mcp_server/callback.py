"""
Quire redirect target (GET /oauth/callback).
Exchanges Quire's code for Quire tokens, parks them under a fresh local authorization code,
and sends the browser back to the MCP client's redirect_uri with that code.
"""
import html
import logging
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, RedirectResponse

from mcp_server.dependencies import get_provider
from mcp_server.provider import QuireProxyProvider
from mcp_server.token_store import TokenStore, mask_token
from mcp_server.upstream import QuireTokenClient, UpstreamNetworkError, UpstreamRejectedError

logger = logging.getLogger(__name__)
router = APIRouter()


@dataclass
class CallbackResult:
    redirect_url: str | None = None
    error: str | None = None
    error_description: str | None = None


def append_query(url: str, params: dict[str, str]) -> str:
    parts = urlsplit(url)
    # Keys in params replace any existing values
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


async def handle_upstream_callback(
    token_store: TokenStore,
    upstream: QuireTokenClient,
    code: str,
    state: str,
) -> CallbackResult:
    # Consumed before the upstream call, so a duplicate callback for the same state misses here
    pending = token_store.consume_pending_request(state)
    if pending is None:
        logger.warning("Callback with unknown or expired state %s", mask_token(state))
        return CallbackResult(error="invalid_request", error_description="Invalid or expired state parameter")

    try:
        tokens = await upstream.exchange_code(code)
    except UpstreamRejectedError as e:
        logger.error("Quire code exchange failed: %s %s", e.status_code, e.body)
        return CallbackResult(
            error="server_error",
            error_description="Failed to exchange authorization code with Quire",
        )
    except UpstreamNetworkError as e:
        logger.error("Quire code exchange failed: %s", e)
        return CallbackResult(error="server_error", error_description="Failed to communicate with Quire")

    local_code = token_store.store_auth_code(
        client_id=pending.client_id,
        code_challenge=pending.code_challenge,
        code_challenge_method=pending.code_challenge_method,
        redirect_uri=pending.redirect_uri,
        upstream_access_token=tokens.access_token,
        upstream_refresh_token=tokens.refresh_token,
        scope=pending.scope,
    )
    # No client state: hand back our own opaque state
    redirect_url = append_query(
        pending.redirect_uri,
        {"code": local_code, "state": pending.client_state or state},
    )
    logger.info("Issued authorization code for client %s", pending.client_id)
    return CallbackResult(redirect_url=redirect_url)


def _error_page(title: str, message: str) -> HTMLResponse:
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
<h1>{html.escape(title)}</h1>
<p>{html.escape(message)}</p>
</body>
</html>"""
    return HTMLResponse(body, status_code=400)


@router.get("/oauth/callback")
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    provider: QuireProxyProvider = Depends(get_provider),
):
    """Quire sends the user here after consent (or denial)."""
    if error:
        logger.warning("Quire returned error on callback: %s", error)
        return _error_page("Authorization Failed", error_description or error)
    if not code or not state:
        return _error_page("Invalid Request", "Missing code or state parameter.")

    result = await handle_upstream_callback(provider.token_store, provider.upstream, code, state)
    if result.redirect_url is None:
        return _error_page("Authorization Failed", result.error_description or result.error or "Unknown error")
    return RedirectResponse(url=result.redirect_url, status_code=302)
