"""
Well-known endpoints: OAuth authorization server metadata (RFC 8414) and
protected resource metadata (RFC 9728).
"""
from fastapi import APIRouter, Depends

from mcp_server.config import RESOURCE_NAME, SCOPES_SUPPORTED, HttpServerConfig
from mcp_server.dependencies import get_config

router = APIRouter()


@router.get("/.well-known/oauth-authorization-server")
def authorization_server_metadata(config: HttpServerConfig = Depends(get_config)):
    """Discovery document MCP clients use to find /authorize, /token and /register."""
    issuer = config.issuer_url
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/token",
        "registration_endpoint": f"{issuer}/register",
        "revocation_endpoint": f"{issuer}/revoke",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic", "none"],
        "revocation_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic", "none"],
        "code_challenge_methods_supported": ["S256", "plain"],
        "scopes_supported": SCOPES_SUPPORTED,
    }


@router.get("/.well-known/oauth-protected-resource")
@router.get("/.well-known/oauth-protected-resource/mcp")
def protected_resource_metadata(config: HttpServerConfig = Depends(get_config)):
    """Points MCP clients at this server as the authorization server for /mcp."""
    return {
        "resource": f"{config.issuer_url}/mcp",
        "authorization_servers": [config.issuer_url],
        "scopes_supported": SCOPES_SUPPORTED,
        "bearer_methods_supported": ["header"],
        "resource_name": RESOURCE_NAME,
    }
