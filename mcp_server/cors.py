"""CORS allowlist: only the OAuth endpoints browsers need are cross-origin enabled."""

CORS_ALLOWED_PATHS = (
    "/.well-known/oauth-authorization-server",
    "/.well-known/oauth-protected-resource",
    "/register",
    "/token",
    "/revoke",
)

CORS_ALLOWED_METHODS = "GET, POST, OPTIONS"
CORS_ALLOWED_HEADERS = "Content-Type, Authorization, mcp-protocol-version"
CORS_MAX_AGE = "86400"


def is_cors_allowed_path(path: str) -> bool:
    """Exact match or a sub-path: /token and /token/x match, /tokenizer does not."""
    return any(path == allowed or path.startswith(allowed + "/") for allowed in CORS_ALLOWED_PATHS)
