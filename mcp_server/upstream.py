"""
Calls to Quire's OAuth token endpoint. Authorization code and refresh grants,
both sent form-encoded with our upstream client credentials.

Failures are split into explicit rejections (non-2xx) and network failures (retryable).
"""
import logging
from dataclasses import dataclass

import httpx

from mcp_server.config import FETCH_TIMEOUT_SECONDS, QUIRE_OAUTH_TOKEN_URL

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    retryable = False


class UpstreamRejectedError(UpstreamError):
    """Quire answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Quire token endpoint returned {status_code}")
        self.status_code = status_code
        self.body = body[:200]


class UpstreamNetworkError(UpstreamError):
    """Timeout or transport failure before a response arrived."""

    retryable = True


@dataclass
class UpstreamTokens:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    scope: str | None = None


def parse_token_response(data: dict) -> UpstreamTokens:
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise UpstreamRejectedError(200, "token response missing access_token")
    expires_in = data.get("expires_in")
    if expires_in is not None:
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            raise UpstreamRejectedError(200, "invalid expires_in") from None
    return UpstreamTokens(
        access_token=access_token,
        refresh_token=data.get("refresh_token") or None,
        expires_in=expires_in,
        scope=data.get("scope"),
    )


class QuireTokenClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = QUIRE_OAUTH_TOKEN_URL,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._timeout = timeout
        self._transport = transport

    async def exchange_code(self, code: str) -> UpstreamTokens:
        return await self._post({"grant_type": "authorization_code", "code": code})

    async def refresh(self, refresh_token: str) -> UpstreamTokens:
        return await self._post({"grant_type": "refresh_token", "refresh_token": refresh_token})

    async def _post(self, form: dict[str, str]) -> UpstreamTokens:
        data = {**form, "client_id": self._client_id, "client_secret": self._client_secret}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamNetworkError(f"Quire token endpoint unreachable: {e}") from e

        if not response.is_success:
            raise UpstreamRejectedError(response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamRejectedError(response.status_code, "token response is not JSON") from e
        if not isinstance(payload, dict):
            raise UpstreamRejectedError(response.status_code, "token response is not an object")
        return parse_token_response(payload)
