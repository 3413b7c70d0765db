"""
Stateful MCP sessions over Streamable HTTP.

Each session is one StreamableHTTPServerTransport plus one MCP server task running in the
manager's task group. Sessions live in a BoundedCache keyed by the mcp-session-id header:
a full table evicts the least recently used session, and idle sessions are swept on a timer.
"""
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.types import INTERNAL_ERROR, INVALID_REQUEST
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from mcp_server.bounded_cache import BoundedCache
from mcp_server.config import MAX_SESSIONS, SESSION_IDLE_TIMEOUT_SECONDS, SHUTDOWN_GRACE_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    transport: Any
    last_activity: float


def jsonrpc_error(status_code: int, code: int, message: str) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        status_code=status_code,
    )


def is_initialize_request(body: bytes) -> bool:
    try:
        message = json.loads(body)
    except ValueError:
        return False
    return isinstance(message, dict) and message.get("method") == "initialize"


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """The body was already read to inspect it; hand it to the transport once more."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _short(session_id: str) -> str:
    return session_id[:8]


class SessionManager:
    def __init__(
        self,
        server_factory: Callable[[], Server],
        max_sessions: int = MAX_SESSIONS,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_SECONDS,
        json_response: bool = False,
        transport_factory: Callable[..., Any] = StreamableHTTPServerTransport,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._server_factory = server_factory
        self._idle_timeout = idle_timeout
        self._json_response = json_response
        self._transport_factory = transport_factory
        self._clock = clock
        self._sessions: BoundedCache[SessionInfo] = BoundedCache(max_sessions, listener=self)
        self._task_group: TaskGroup | None = None

    @property
    def active_sessions(self) -> int:
        return self._sessions.size

    def has_session(self, session_id: str) -> bool:
        return self._sessions.has(session_id)

    @asynccontextmanager
    async def run(self):
        """Own the task group the per-session servers run in. Closes every session on exit."""
        if self._task_group is not None:
            raise RuntimeError("SessionManager.run() is already active")
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("Session manager started (max %d sessions)", self._sessions.max_size)
            try:
                yield self
            finally:
                await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    # --- EvictionListener ---

    def on_evict(self, key: str, value: SessionInfo) -> None:
        logger.warning("Session table full, evicting least recently used session %s", _short(key))
        self._schedule_close(key, value.transport)

    # --- request handling ---

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self._dispatch(scope, receive, tracking_send)
        except Exception:
            logger.exception("Error handling MCP %s request", scope.get("method"))
            if not response_started:
                await jsonrpc_error(500, INTERNAL_ERROR, "Internal server error")(scope, receive, send)

    async def _dispatch(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if request.method == "POST":
            body = await request.body()
            replay = _replay_body(body, receive)
            if session_id:
                await self._forward(session_id, scope, replay, send)
                return
            if not is_initialize_request(body):
                response = jsonrpc_error(400, INVALID_REQUEST, "Bad Request: No valid session ID provided")
                await response(scope, receive, send)
                return
            await self._initialize(scope, replay, send)
            return

        if request.method in ("GET", "DELETE"):
            if not session_id:
                await jsonrpc_error(400, INVALID_REQUEST, "Bad Request: Missing session ID")(scope, receive, send)
                return
            await self._forward(session_id, scope, receive, send)
            return

        response = JSONResponse(
            {"jsonrpc": "2.0", "error": {"code": INVALID_REQUEST, "message": "Method not allowed"}, "id": None},
            status_code=405,
            headers={"Allow": "GET, POST, DELETE"},
        )
        await response(scope, receive, send)

    async def _forward(self, session_id: str, scope: Scope, receive: Receive, send: Send) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.info("Unknown session %s, client must re-initialize", _short(session_id))
            await jsonrpc_error(404, INVALID_REQUEST, "Session not found")(scope, receive, send)
            return
        session.last_activity = self._clock()
        await session.transport.handle_request(scope, receive, send)

    # --- lifecycle ---

    async def _initialize(self, scope: Scope, receive: Receive, send: Send) -> None:
        """
        Start a transport for an initialize request. The session enters the table only once
        the transport answers 2xx, i.e. when the client actually receives the session id.
        """
        session_id, transport = await self._start_session()
        accepted = False

        async def registering_send(message: Message) -> None:
            nonlocal accepted
            if message["type"] == "http.response.start" and 200 <= message["status"] < 300:
                accepted = True
                self._sessions.set(session_id, SessionInfo(transport=transport, last_activity=self._clock()))
                logger.info("Session %s created (%d active)", _short(session_id), self._sessions.size)
            await send(message)

        try:
            await transport.handle_request(scope, receive, registering_send)
        finally:
            if not accepted:
                logger.info("Initialize for session %s was not accepted, closing it", _short(session_id))
                self._schedule_close(session_id, transport)

    async def _start_session(self):
        if self._task_group is None:
            raise RuntimeError("Session manager is not running")
        session_id = uuid.uuid4().hex
        transport = self._transport_factory(
            mcp_session_id=session_id,
            is_json_response_enabled=self._json_response,
            event_store=None,
        )
        await self._task_group.start(self._run_session, session_id, transport)
        return session_id, transport

    async def _run_session(
        self,
        session_id: str,
        transport,
        *,
        task_status: TaskStatus = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        try:
            async with transport.connect() as (read_stream, write_stream):
                task_status.started()
                server = self._server_factory()
                try:
                    await server.run(
                        read_stream,
                        write_stream,
                        server.create_initialization_options(),
                        stateless=False,
                    )
                except Exception:
                    logger.exception("MCP server for session %s stopped with an error", _short(session_id))
        finally:
            self._forget(session_id, transport)

    def _forget(self, session_id: str, transport) -> None:
        """Drop the table entry if it still belongs to this transport."""
        session = self._sessions.peek(session_id)
        if session is not None and session.transport is transport:
            self._sessions.delete(session_id)
            logger.info("Session %s closed (%d active)", _short(session_id), self._sessions.size)

    def _schedule_close(self, session_id: str, transport) -> None:
        if self._task_group is None:
            logger.warning("Cannot close session %s: session manager is not running", _short(session_id))
            return
        self._task_group.start_soon(self._close_transport, session_id, transport)

    async def _close_transport(self, session_id: str, transport) -> None:
        try:
            await transport.terminate()
        except Exception:
            # Best effort: a send may be in flight on a transport we are tearing down
            logger.warning("Error closing transport for session %s", _short(session_id), exc_info=True)

    def sweep_idle(self) -> int:
        """Close sessions idle longer than the timeout. Returns how many were closed."""
        now = self._clock()
        idle = [
            (session_id, session)
            for session_id, session in self._sessions.items()
            if now - session.last_activity > self._idle_timeout
        ]
        for session_id, session in idle:
            self._sessions.delete(session_id)
            logger.info("Session %s idle for %.0fs, closing", _short(session_id), now - session.last_activity)
            self._schedule_close(session_id, session.transport)
        return len(idle)

    async def close_all(self) -> None:
        sessions = list(self._sessions.items())
        self._sessions.clear()
        if not sessions:
            return
        logger.info("Closing %d active sessions", len(sessions))
        with anyio.move_on_after(SHUTDOWN_GRACE_SECONDS, shield=True) as scope:
            for session_id, session in sessions:
                await self._close_transport(session_id, session.transport)
        if scope.cancelled_caught:
            logger.warning("Timed out closing sessions after %ss", SHUTDOWN_GRACE_SECONDS)
