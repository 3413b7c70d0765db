"""
Configuration for the Quire MCP HTTP server (OAuth proxy + MCP sessions).
Upstream credentials and bind address from env; everything else is a fixed constant.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

# Upstream Quire OAuth / API
QUIRE_OAUTH_AUTHORIZE_URL = "https://quire.io/oauth"
QUIRE_OAUTH_TOKEN_URL = "https://quire.io/oauth/token"
QUIRE_API_BASE_URL = "https://quire.io/api"
FETCH_TIMEOUT_SECONDS = 30.0

DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 3001

# Lifetimes (seconds)
PENDING_REQUEST_TTL = 600
AUTH_CODE_TTL = 600
ACCESS_TOKEN_TTL = 3600
REFRESH_TOKEN_TTL = 30 * 24 * 3600

# Background maintenance and sessions
CLEANUP_INTERVAL_SECONDS = 300
SESSION_IDLE_TIMEOUT_SECONDS = 1800
MAX_SESSIONS = 1000
SHUTDOWN_GRACE_SECONDS = 5

# Rate limit for /oauth and /mcp, per client IP
RATE_LIMIT_REQUESTS = 100
RATE_LIMIT_WINDOW_SECONDS = 60

SCOPES_SUPPORTED = ["read:user"]
RESOURCE_NAME = "Quire MCP Server"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "[::1]", "::1")


@dataclass(frozen=True)
class HttpServerConfig:
    host: str
    port: int
    issuer_url: str
    quire_client_id: str
    quire_client_secret: str
    quire_redirect_uri: str
    token_store_path: Path | None = None
    # Host header allowlist; None disables the check
    allowed_hosts: tuple[str, ...] | None = None

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.issuer_url}/.well-known/oauth-protected-resource"


def is_localhost_url(url: str) -> bool:
    hostname = urlparse(url).hostname or ""
    return hostname in LOOPBACK_HOSTS


def get_token_store_path(environ=None) -> Path:
    """QUIRE_TOKEN_STORE_PATH, else $XDG_CONFIG_HOME/quire-mcp/tokens.json (~/.config fallback)."""
    environ = os.environ if environ is None else environ
    explicit = environ.get("QUIRE_TOKEN_STORE_PATH")
    if explicit:
        return Path(explicit).expanduser()
    config_home = environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "quire-mcp" / "tokens.json"


def _parse_port(raw: str | None) -> int:
    if not raw:
        return DEFAULT_SERVER_PORT
    try:
        port = int(raw)
    except ValueError:
        raise ValueError(f"MCP_SERVER_PORT must be an integer, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"MCP_SERVER_PORT out of range: {port}")
    return port


def get_http_server_config(environ=None) -> HttpServerConfig | None:
    """
    Build the server config from the environment.
    Returns None when the Quire OAuth client credentials are not set.
    Raises ValueError for an invalid port or a non-HTTPS issuer on a public host.
    """
    environ = os.environ if environ is None else environ
    client_id = environ.get("QUIRE_OAUTH_CLIENT_ID")
    client_secret = environ.get("QUIRE_OAUTH_CLIENT_SECRET")
    if not client_id or not client_secret:
        return None

    host = environ.get("MCP_SERVER_HOST", DEFAULT_SERVER_HOST)
    port = _parse_port(environ.get("MCP_SERVER_PORT"))
    issuer_url = (environ.get("MCP_ISSUER_URL") or f"http://localhost:{port}").rstrip("/")
    if urlparse(issuer_url).scheme != "https" and not is_localhost_url(issuer_url):
        raise ValueError(f"MCP_ISSUER_URL must use https for non-localhost hosts: {issuer_url}")
    redirect_uri = environ.get("QUIRE_OAUTH_REDIRECT_URI") or f"{issuer_url}/oauth/callback"

    allowed_hosts = None
    if host in LOOPBACK_HOSTS:
        allowed_hosts = ("localhost", "127.0.0.1", "[::1]")

    return HttpServerConfig(
        host=host,
        port=port,
        issuer_url=issuer_url,
        quire_client_id=client_id,
        quire_client_secret=client_secret,
        quire_redirect_uri=redirect_uri,
        token_store_path=get_token_store_path(environ),
        allowed_hosts=allowed_hosts,
    )
