"""
OAuth proxy provider in front of Quire.

MCP clients only ever see tokens minted here. Each local token wraps the Quire tokens
obtained at /oauth/callback (or on refresh); verify_access_token hands the wrapped
Quire access token to the tool layer via AuthInfo.extra["upstream_token"].
"""
import logging
from dataclasses import dataclass, field
from urllib.parse import urlencode

from mcp_server.clients import ClientInformation
from mcp_server.config import QUIRE_OAUTH_AUTHORIZE_URL, HttpServerConfig
from mcp_server.errors import (
    InvalidGrantError,
    InvalidRequestError,
    InvalidTokenError,
    ServerError,
    TemporarilyUnavailableError,
)
from mcp_server.token_cache import TokenCacheFile, tokens_from_expires_in
from mcp_server.token_store import TokenStore, mask_token
from mcp_server.upstream import (
    QuireTokenClient,
    UpstreamNetworkError,
    UpstreamRejectedError,
    UpstreamTokens,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationParams:
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str = "S256"
    scopes: list[str] = field(default_factory=list)
    state: str | None = None


@dataclass
class AuthInfo:
    token: str
    client_id: str
    scopes: list[str]
    expires_at: int | None
    extra: dict = field(default_factory=dict)

    @property
    def upstream_token(self) -> str:
        return self.extra["upstream_token"]


class QuireProxyProvider:
    def __init__(
        self,
        config: HttpServerConfig,
        token_store: TokenStore,
        upstream: QuireTokenClient,
        token_cache: TokenCacheFile | None = None,
    ):
        self.config = config
        self.token_store = token_store
        self.upstream = upstream
        self.token_cache = token_cache

    async def authorize(self, client: ClientInformation, params: AuthorizationParams) -> str:
        """
        Park the client's PKCE challenge and state locally, return the Quire authorize URL.
        Only our own state and callback URL are sent upstream.
        """
        if params.redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("Invalid redirect_uri")

        state = self.token_store.store_pending_request(
            client_id=client.client_id,
            code_challenge=params.code_challenge,
            code_challenge_method=params.code_challenge_method,
            redirect_uri=params.redirect_uri,
            scope=" ".join(params.scopes) if params.scopes else None,
            client_state=params.state,
        )
        query = {
            "response_type": "code",
            "client_id": self.config.quire_client_id,
            "redirect_uri": self.config.quire_redirect_uri,
            "state": state,
        }
        if params.scopes:
            query["scope"] = " ".join(params.scopes)
        logger.info("Authorize: client %s redirected to Quire (state %s)", client.client_id, mask_token(state))
        return f"{QUIRE_OAUTH_AUTHORIZE_URL}?{urlencode(query)}"

    async def challenge_for_authorization_code(self, client: ClientInformation, code: str) -> str:
        entry = self.token_store.get_auth_code(code)
        if entry is None:
            raise InvalidGrantError("Invalid authorization code")
        return entry.code_challenge

    async def challenge_method_for_authorization_code(self, client: ClientInformation, code: str) -> str:
        entry = self.token_store.get_auth_code(code)
        if entry is None:
            raise InvalidGrantError("Invalid authorization code")
        return entry.code_challenge_method

    async def exchange_authorization_code(
        self,
        client: ClientInformation,
        code: str,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
    ) -> dict:
        # Consumed before the checks: a code presented by the wrong client is burned
        entry = self.token_store.consume_auth_code(code)
        if entry is None:
            raise InvalidGrantError("Invalid or expired authorization code")
        if entry.client_id != client.client_id:
            logger.warning("Code for client %s presented by client %s", entry.client_id, client.client_id)
            raise InvalidGrantError("Authorization code was not issued to this client")
        if redirect_uri is not None and redirect_uri != entry.redirect_uri:
            raise InvalidGrantError("redirect_uri mismatch")

        return self._issue_tokens(
            client_id=client.client_id,
            upstream_access_token=entry.upstream_access_token,
            upstream_refresh_token=entry.upstream_refresh_token,
            scope=entry.scope,
        )

    async def exchange_refresh_token(
        self,
        client: ClientInformation,
        refresh_token: str,
        scopes: list[str] | None = None,
    ) -> dict:
        entry = self.token_store.get_refresh_token(refresh_token)
        if entry is None:
            raise InvalidGrantError("Invalid refresh token")
        if entry.client_id != client.client_id:
            raise InvalidGrantError("Refresh token was not issued to this client")

        try:
            upstream_tokens = await self.upstream.refresh(entry.upstream_refresh_token)
        except UpstreamNetworkError as e:
            logger.warning("Quire token refresh failed (network): %s", e)
            raise TemporarilyUnavailableError("Quire token refresh failed") from e
        except UpstreamRejectedError as e:
            logger.error("Quire token refresh failed: %s %s", e.status_code, e.body)
            raise ServerError("Quire token refresh failed") from e

        # A concurrent refresh or revoke may have retired this token while we were waiting
        if not self.token_store.revoke_refresh_token(refresh_token):
            raise InvalidGrantError("Invalid refresh token")

        self._persist_upstream_tokens(upstream_tokens)
        return self._issue_tokens(
            client_id=client.client_id,
            upstream_access_token=upstream_tokens.access_token,
            upstream_refresh_token=upstream_tokens.refresh_token,
            scope=entry.scope,
        )

    async def verify_access_token(self, token: str) -> AuthInfo:
        entry = self.token_store.get_access_token(token)
        if entry is None:
            raise InvalidTokenError("Invalid or expired token")
        return AuthInfo(
            token=token,
            client_id=entry.client_id,
            scopes=entry.scope.split(" ") if entry.scope else [],
            expires_at=int(entry.expires_at),
            extra={"upstream_token": entry.upstream_access_token},
        )

    async def revoke_token(
        self,
        client: ClientInformation,
        token: str,
        token_type_hint: str | None = None,
    ) -> None:
        """Idempotent: unknown tokens are ignored."""
        if token_type_hint == "refresh_token":
            revoked = self.token_store.revoke_refresh_token(token)
        elif token_type_hint:
            revoked = self.token_store.revoke_access_token(token)
        else:
            revoked_access = self.token_store.revoke_access_token(token)
            revoked_refresh = self.token_store.revoke_refresh_token(token)
            revoked = revoked_access or revoked_refresh
        if revoked:
            logger.info("Client %s revoked token %s", client.client_id, mask_token(token))

    def _issue_tokens(
        self,
        client_id: str,
        upstream_access_token: str,
        upstream_refresh_token: str | None,
        scope: str | None,
    ) -> dict:
        issued = self.token_store.store_access_token(
            client_id=client_id,
            upstream_access_token=upstream_access_token,
            upstream_refresh_token=upstream_refresh_token,
            scope=scope,
        )
        response = {
            "access_token": issued.token,
            "token_type": "bearer",
            "expires_in": issued.expires_in,
            "scope": scope or "",
        }
        if upstream_refresh_token:
            response["refresh_token"] = self.token_store.store_refresh_token(
                client_id=client_id,
                upstream_refresh_token=upstream_refresh_token,
                scope=scope,
            )
        return response

    def _persist_upstream_tokens(self, tokens: UpstreamTokens) -> None:
        if self.token_cache is None:
            return
        try:
            self.token_cache.save_tokens(
                tokens_from_expires_in(tokens.access_token, tokens.refresh_token, tokens.expires_in)
            )
        except Exception:
            logger.warning("Could not write refreshed Quire tokens to %s", self.token_cache.path, exc_info=True)
