"""
In-memory TTL store for the OAuth proxy: pending authorize requests (keyed by our upstream
state), authorization codes, access tokens and refresh tokens (keyed by the opaque values
we hand to MCP clients). Nothing survives a restart.

Expiry is checked on every read; cleanup() only reclaims memory.
"""
import hashlib
import logging
import secrets
import time
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from typing import Callable, NamedTuple

from mcp_server.config import (
    ACCESS_TOKEN_TTL,
    AUTH_CODE_TTL,
    PENDING_REQUEST_TTL,
    REFRESH_TOKEN_TTL,
)

logger = logging.getLogger(__name__)


@dataclass
class PendingAuthRequest:
    client_id: str
    code_challenge: str
    code_challenge_method: str
    redirect_uri: str
    scope: str | None
    client_state: str | None
    created_at: float

    def expired(self, now: float) -> bool:
        return now > self.created_at + PENDING_REQUEST_TTL


@dataclass
class AuthCodeEntry:
    client_id: str
    code_challenge: str
    code_challenge_method: str
    redirect_uri: str
    upstream_access_token: str
    upstream_refresh_token: str | None
    scope: str | None
    created_at: float
    expires_at: float


@dataclass
class TokenEntry:
    upstream_access_token: str
    upstream_refresh_token: str | None
    client_id: str
    scope: str | None
    created_at: float
    expires_at: float


@dataclass
class RefreshTokenEntry:
    upstream_refresh_token: str
    client_id: str
    scope: str | None
    created_at: float
    expires_at: float


class IssuedAccessToken(NamedTuple):
    token: str
    expires_in: int


def generate_secure_token() -> str:
    """256 bits from the OS CSPRNG, URL-safe base64 without padding."""
    return secrets.token_urlsafe(32)


def verify_pkce_challenge(code_verifier: str, code_challenge: str, method: str | None) -> bool:
    """
    PKCE check (RFC 7636). S256: base64url(sha256(verifier)) without padding == challenge.
    plain: verifier == challenge. Comparison is constant-time for both.
    Verifiers are ASCII only (RFC 7636 4.1); anything else fails.
    """
    if not code_verifier.isascii():
        return False
    if method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        computed = urlsafe_b64encode(digest).rstrip(b"=")
        return secrets.compare_digest(computed, code_challenge.encode("utf-8"))
    if method == "plain":
        return secrets.compare_digest(code_verifier.encode("utf-8"), code_challenge.encode("utf-8"))
    return False


class TokenStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._pending: dict[str, PendingAuthRequest] = {}
        self._auth_codes: dict[str, AuthCodeEntry] = {}
        self._access_tokens: dict[str, TokenEntry] = {}
        self._refresh_tokens: dict[str, RefreshTokenEntry] = {}

    def now(self) -> float:
        return self._clock()

    # --- pending authorize requests ---

    def store_pending_request(
        self,
        client_id: str,
        code_challenge: str,
        code_challenge_method: str,
        redirect_uri: str,
        scope: str | None = None,
        client_state: str | None = None,
    ) -> str:
        """Store the client's authorize parameters; returns the state we send upstream."""
        state = generate_secure_token()
        self._pending[state] = PendingAuthRequest(
            client_id=client_id,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            redirect_uri=redirect_uri,
            scope=scope,
            client_state=client_state,
            created_at=self.now(),
        )
        return state

    def consume_pending_request(self, state: str) -> PendingAuthRequest | None:
        request = self._pending.pop(state, None)
        if request is None or request.expired(self.now()):
            return None
        return request

    # --- authorization codes ---

    def store_auth_code(
        self,
        client_id: str,
        code_challenge: str,
        code_challenge_method: str,
        redirect_uri: str,
        upstream_access_token: str,
        upstream_refresh_token: str | None = None,
        scope: str | None = None,
    ) -> str:
        code = generate_secure_token()
        now = self.now()
        self._auth_codes[code] = AuthCodeEntry(
            client_id=client_id,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            redirect_uri=redirect_uri,
            upstream_access_token=upstream_access_token,
            upstream_refresh_token=upstream_refresh_token,
            scope=scope,
            created_at=now,
            expires_at=now + AUTH_CODE_TTL,
        )
        return code

    def get_auth_code(self, code: str) -> AuthCodeEntry | None:
        entry = self._auth_codes.get(code)
        if entry is None:
            return None
        if self.now() > entry.expires_at:
            del self._auth_codes[code]
            return None
        return entry

    def consume_auth_code(self, code: str) -> AuthCodeEntry | None:
        entry = self.get_auth_code(code)
        if entry is not None:
            del self._auth_codes[code]
        return entry

    # --- access tokens ---

    def store_access_token(
        self,
        client_id: str,
        upstream_access_token: str,
        upstream_refresh_token: str | None = None,
        scope: str | None = None,
    ) -> IssuedAccessToken:
        token = generate_secure_token()
        now = self.now()
        self._access_tokens[token] = TokenEntry(
            upstream_access_token=upstream_access_token,
            upstream_refresh_token=upstream_refresh_token,
            client_id=client_id,
            scope=scope,
            created_at=now,
            expires_at=now + ACCESS_TOKEN_TTL,
        )
        return IssuedAccessToken(token=token, expires_in=ACCESS_TOKEN_TTL)

    def get_access_token(self, token: str) -> TokenEntry | None:
        entry = self._access_tokens.get(token)
        if entry is None:
            return None
        if self.now() > entry.expires_at:
            del self._access_tokens[token]
            return None
        return entry

    def revoke_access_token(self, token: str) -> bool:
        return self._access_tokens.pop(token, None) is not None

    # --- refresh tokens ---

    def store_refresh_token(
        self,
        client_id: str,
        upstream_refresh_token: str,
        scope: str | None = None,
    ) -> str:
        token = generate_secure_token()
        now = self.now()
        self._refresh_tokens[token] = RefreshTokenEntry(
            upstream_refresh_token=upstream_refresh_token,
            client_id=client_id,
            scope=scope,
            created_at=now,
            expires_at=now + REFRESH_TOKEN_TTL,
        )
        return token

    def get_refresh_token(self, token: str) -> RefreshTokenEntry | None:
        entry = self._refresh_tokens.get(token)
        if entry is None:
            return None
        if self.now() > entry.expires_at:
            del self._refresh_tokens[token]
            return None
        return entry

    def revoke_refresh_token(self, token: str) -> bool:
        return self._refresh_tokens.pop(token, None) is not None

    def cleanup(self) -> int:
        """Drop every expired entry from all four maps. Returns how many were removed."""
        now = self.now()
        removed = 0
        for state in [s for s, r in self._pending.items() if r.expired(now)]:
            del self._pending[state]
            removed += 1
        for store in (self._auth_codes, self._access_tokens, self._refresh_tokens):
            for key in [k for k, e in store.items() if now > e.expires_at]:
                del store[key]
                removed += 1
        if removed:
            logger.debug("Token store cleanup removed %d expired entries", removed)
        return removed


def mask_token(value: str) -> str:
    """First 8 characters, for log lines."""
    return f"{value[:8]}..."
