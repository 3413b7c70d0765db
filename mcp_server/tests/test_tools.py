"""Tests for the Quire REST client and the MCP tool wiring."""
from types import SimpleNamespace

import httpx
import pytest

from mcp_server.provider import AuthInfo
from mcp_server.quire_client import QuireApiError, QuireClient
from mcp_server.tools import create_mcp_server, get_upstream_token, session_server_factory


def _ctx(scope):
    return SimpleNamespace(request_context=SimpleNamespace(request=SimpleNamespace(scope=scope)))


@pytest.mark.asyncio
async def test_get_me_uses_upstream_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"oid": "u1", "name": "Ada"})

    client = QuireClient("quire-at", transport=httpx.MockTransport(handler))
    assert await client.get_me() == {"oid": "u1", "name": "Ada"}
    assert seen["auth"] == "Bearer quire-at"
    assert seen["url"] == "https://quire.io/api/user/id/me"


@pytest.mark.asyncio
async def test_api_error():
    client = QuireClient("quire-at", transport=httpx.MockTransport(lambda r: httpx.Response(401, text="expired")))
    with pytest.raises(QuireApiError) as exc_info:
        await client.list_projects()
    assert exc_info.value.status_code == 401


def test_get_upstream_token_from_scope():
    auth = AuthInfo(token="local", client_id="c1", scopes=[], expires_at=None, extra={"upstream_token": "quire-at"})
    assert get_upstream_token(_ctx({"auth": auth})) == "quire-at"


def test_get_upstream_token_requires_auth():
    with pytest.raises(ValueError):
        get_upstream_token(_ctx({}))


@pytest.mark.asyncio
async def test_server_registers_tools():
    mcp = create_mcp_server()
    names = {tool.name for tool in await mcp.list_tools()}
    assert {"whoami", "list_projects"} <= names


def test_session_server_factory_returns_fresh_servers():
    assert session_server_factory() is not session_server_factory()
