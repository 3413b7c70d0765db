"""Tests for /mcp: bearer authentication and hand-off to the session manager."""
import json

import pytest
from fastapi.testclient import TestClient

from mcp_server.main import run_maintenance

INIT_BODY = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2025-03-26"}}
MCP_HEADERS = {"Accept": "application/json, text/event-stream"}


@pytest.fixture
def access_token(token_store):
    return token_store.store_access_token("c1", "quire-at", scope="read:user").token


@pytest.fixture
def live_client(app):
    with TestClient(app) as client:
        yield client


def _auth(token):
    return {**MCP_HEADERS, "Authorization": f"Bearer {token}"}


def test_missing_token_points_at_resource_metadata(live_client):
    r = live_client.post("/mcp", json=INIT_BODY, headers=MCP_HEADERS)
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_token"
    challenge = r.headers["www-authenticate"]
    assert challenge.startswith("Bearer ")
    assert 'resource_metadata="http://localhost:3001/.well-known/oauth-protected-resource"' in challenge


def test_unknown_token(live_client):
    r = live_client.post("/mcp", json=INIT_BODY, headers=_auth("not-a-token"))
    assert r.status_code == 401
    assert r.json()["error_description"] == "Invalid or expired token"


def test_non_bearer_scheme(live_client, access_token):
    r = live_client.post("/mcp", json=INIT_BODY, headers={**MCP_HEADERS, "Authorization": f"Basic {access_token}"})
    assert r.status_code == 401


def test_expired_token(live_client, access_token, clock):
    clock.advance(3601)
    r = live_client.post("/mcp", json=INIT_BODY, headers=_auth(access_token))
    assert r.status_code == 401


def test_initialize_then_reuse_session(live_client, access_token, transports):
    r = live_client.post("/mcp", json=INIT_BODY, headers=_auth(access_token))
    assert r.status_code == 200
    session_id = r.headers["mcp-session-id"]

    ping = {"jsonrpc": "2.0", "id": 2, "method": "ping"}
    r = live_client.post("/mcp", json=ping, headers={**_auth(access_token), "mcp-session-id": session_id})
    assert r.status_code == 200
    assert json.loads(transports.transports[0].bodies[-1]) == ping


def test_auth_info_reaches_transport(live_client, access_token, transports):
    live_client.post("/mcp", json=INIT_BODY, headers=_auth(access_token))
    auth = transports.transports[0].auth[0]
    assert auth.client_id == "c1"
    assert auth.upstream_token == "quire-at"


def test_unknown_session_is_404(live_client, access_token):
    r = live_client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "id": 2, "method": "ping"},
        headers={**_auth(access_token), "mcp-session-id": "stale-session"},
    )
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "Session not found"
    assert r.json()["id"] is None


def test_no_redirect_to_trailing_slash(live_client, access_token):
    r = live_client.get("/mcp", headers=_auth(access_token), follow_redirects=False)
    assert r.status_code == 400


def test_mcp_responses_are_not_cached(live_client, access_token):
    r = live_client.post("/mcp", json=INIT_BODY, headers=_auth(access_token))
    assert r.headers["cache-control"] == "no-store, no-cache, must-revalidate, private"


def test_maintenance_pass(app, token_store, clock):
    token_store.store_access_token("c1", "quire-at")
    clock.advance(3601)
    run_maintenance(app)
    assert token_store.cleanup() == 0
