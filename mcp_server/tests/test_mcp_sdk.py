"""End-to-end /mcp tests against the real Streamable HTTP transport and FastMCP server."""
import pytest
from fastapi.testclient import TestClient

from mcp_server.sessions import SessionManager
from mcp_server.tools import create_mcp_server

PROTOCOL_VERSION = "2025-03-26"
INIT_BODY = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": {"name": "test-client", "version": "1.0"},
    },
}


class StubQuire:
    tokens = []

    def __init__(self, access_token):
        StubQuire.tokens.append(access_token)

    async def get_me(self):
        return {"oid": "u1", "name": "Ada"}

    async def list_projects(self):
        return []


@pytest.fixture
def session_manager(clock):
    StubQuire.tokens = []
    return SessionManager(
        lambda: create_mcp_server(client_factory=StubQuire)._mcp_server,
        json_response=True,
        clock=clock,
    )


@pytest.fixture
def access_token(token_store):
    return token_store.store_access_token("c1", "quire-at", scope="read:user").token


@pytest.fixture
def live_client(app):
    with TestClient(app) as client:
        yield client


def _headers(token, session_id=None):
    headers = {
        "Accept": "application/json, text/event-stream",
        "Authorization": f"Bearer {token}",
        "mcp-protocol-version": PROTOCOL_VERSION,
    }
    if session_id:
        headers["mcp-session-id"] = session_id
    return headers


def _open_session(client, token):
    r = client.post("/mcp", json=INIT_BODY, headers=_headers(token))
    assert r.status_code == 200
    assert r.json()["result"]["serverInfo"]["name"] == "Quire MCP Server"
    session_id = r.headers["mcp-session-id"]
    r = client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "method": "notifications/initialized"},
        headers=_headers(token, session_id),
    )
    assert r.status_code == 202
    return session_id


def test_session_lifecycle(live_client, access_token, session_manager):
    session_id = _open_session(live_client, access_token)
    assert session_manager.has_session(session_id)

    r = live_client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
        headers=_headers(access_token, session_id),
    )
    assert r.status_code == 200
    names = {tool["name"] for tool in r.json()["result"]["tools"]}
    assert {"whoami", "list_projects"} <= names

    r = live_client.delete("/mcp", headers=_headers(access_token, session_id))
    assert r.status_code == 200

    r = live_client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "id": 3, "method": "tools/list"},
        headers=_headers(access_token, session_id),
    )
    assert r.status_code == 404


def test_tool_call_uses_upstream_token(live_client, access_token):
    session_id = _open_session(live_client, access_token)
    r = live_client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "whoami", "arguments": {}}},
        headers=_headers(access_token, session_id),
    )
    assert r.status_code == 200
    result = r.json()["result"]
    assert result.get("isError") is not True
    assert "Ada" in result["content"][0]["text"]
    assert StubQuire.tokens == ["quire-at"]


def test_unacceptable_initialize_leaves_no_session(live_client, access_token, session_manager):
    headers = {**_headers(access_token), "Accept": "text/event-stream"}
    r = live_client.post("/mcp", json=INIT_BODY, headers=headers)
    assert r.status_code == 406
    assert session_manager.active_sessions == 0
