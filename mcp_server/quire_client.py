"""
Minimal Quire REST client. Authenticated with the upstream (Quire) access token,
never with a token minted by this server.
"""
import logging
from typing import Any

import httpx

from mcp_server.config import FETCH_TIMEOUT_SECONDS, QUIRE_API_BASE_URL

logger = logging.getLogger(__name__)


class QuireApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"Quire API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class QuireClient:
    def __init__(
        self,
        access_token: str,
        base_url: str = QUIRE_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._access_token = access_token
        self._base_url = base_url
        self._transport = transport

    async def get_me(self) -> dict[str, Any]:
        """The user the token belongs to."""
        return await self._get("/user/id/me")

    async def list_projects(self) -> list[dict[str, Any]]:
        return await self._get("/project/list")

    async def _get(self, path: str) -> Any:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=FETCH_TIMEOUT_SECONDS,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"},
        ) as client:
            response = await client.get(path)
        if not response.is_success:
            logger.warning("Quire GET %s failed: %s", path, response.status_code)
            raise QuireApiError(response.status_code, response.text[:200])
        return response.json()
