"""
Pytest configuration for mcp_server. Every test gets its own stores and a fake clock;
Quire is never contacted (the upstream token client is an AsyncMock).
"""
import time
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import anyio
import pytest
from fastapi.testclient import TestClient
from starlette.responses import JSONResponse

from mcp_server.clients import ClientInformation, ClientRegistry
from mcp_server.config import HttpServerConfig
from mcp_server.main import create_app
from mcp_server.provider import QuireProxyProvider
from mcp_server.rate_limit import SlidingWindowRateLimiter
from mcp_server.sessions import SessionManager
from mcp_server.token_cache import TokenCacheFile
from mcp_server.token_store import TokenStore
from mcp_server.upstream import QuireTokenClient, UpstreamTokens

CLIENT_REDIRECT_URI = "http://localhost:8080/callback"


class FakeClock:
    def __init__(self, start: float | None = None):
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return HttpServerConfig(
        host="127.0.0.1",
        port=3001,
        issuer_url="http://localhost:3001",
        quire_client_id="quire-client-id",
        quire_client_secret="quire-client-secret",
        quire_redirect_uri="http://localhost:3001/oauth/callback",
        token_store_path=tmp_path / "tokens.json",
    )


@pytest.fixture
def token_store(clock):
    return TokenStore(clock=clock)


@pytest.fixture
def upstream():
    mock = AsyncMock(spec=QuireTokenClient)
    mock.exchange_code.return_value = UpstreamTokens(
        access_token="quire-at", refresh_token="quire-rt", expires_in=3600
    )
    mock.refresh.return_value = UpstreamTokens(
        access_token="quire-at-2", refresh_token="quire-rt-2", expires_in=3600
    )
    return mock


@pytest.fixture
def token_cache(tmp_path):
    return TokenCacheFile(tmp_path / "tokens.json")


@pytest.fixture
def provider(config, token_store, upstream, token_cache):
    return QuireProxyProvider(config, token_store, upstream, token_cache)


@pytest.fixture
def public_client():
    return ClientInformation(
        client_id="c1",
        client_id_issued_at=0,
        redirect_uris=[CLIENT_REDIRECT_URI],
        token_endpoint_auth_method="none",
    )


@pytest.fixture
def clients():
    return ClientRegistry()


@pytest.fixture
def app(config, token_store, clients, upstream, token_cache, session_manager):
    return create_app(
        config,
        token_store=token_store,
        clients=clients,
        upstream=upstream,
        session_manager=session_manager,
        rate_limiter=SlidingWindowRateLimiter(limit=1000),
        token_cache=token_cache,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


# --- MCP session fakes: stand in for StreamableHTTPServerTransport and the MCP server ---


class FakeTransport:
    """Answers every request with a JSON-RPC result echoing the session id."""

    def __init__(self, mcp_session_id, is_json_response_enabled=False, event_store=None):
        self.mcp_session_id = mcp_session_id
        self.terminated = False
        self.closed = anyio.Event()
        self.bodies = []
        self.auth = []
        self.fail_with = None
        self.reject_status = None

    @asynccontextmanager
    async def connect(self):
        yield self, self

    async def handle_request(self, scope, receive, send):
        if self.fail_with is not None:
            raise self.fail_with
        if self.reject_status is not None:
            error = {"jsonrpc": "2.0", "error": {"code": -32600, "message": "Rejected"}, "id": None}
            await JSONResponse(error, status_code=self.reject_status)(scope, receive, send)
            return
        if scope["method"] == "DELETE":
            await self.terminate()
            await JSONResponse({}, status_code=200)(scope, receive, send)
            return
        message = await receive()
        self.bodies.append(message.get("body", b""))
        self.auth.append(scope.get("auth"))
        response = JSONResponse(
            {"jsonrpc": "2.0", "id": 1, "result": {"session": self.mcp_session_id}},
            headers={"mcp-session-id": self.mcp_session_id},
        )
        await response(scope, receive, send)

    async def terminate(self):
        self.terminated = True
        self.closed.set()


class FakeServer:
    """Runs until its transport is terminated."""

    def create_initialization_options(self):
        return None

    async def run(self, read_stream, write_stream, initialization_options, stateless=False):
        await read_stream.closed.wait()


class TransportRecorder:
    def __init__(self):
        self.transports = []
        # Status new transports answer with, e.g. 406 for an unacceptable Accept header
        self.reject_status = None

    def __call__(self, **kwargs):
        transport = FakeTransport(**kwargs)
        transport.reject_status = self.reject_status
        self.transports.append(transport)
        return transport


@pytest.fixture
def transports():
    return TransportRecorder()


@pytest.fixture
def make_session_manager(clock):
    def make(transport_factory, max_sessions=3):
        return SessionManager(FakeServer, max_sessions=max_sessions, transport_factory=transport_factory, clock=clock)

    return make


@pytest.fixture
def session_manager(make_session_manager, transports):
    return make_session_manager(transports)
