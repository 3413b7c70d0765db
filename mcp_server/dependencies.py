"""FastAPI dependencies: shared service objects hang off app.state (set in main.create_app)."""
from fastapi import Request

from mcp_server.clients import ClientRegistry
from mcp_server.config import HttpServerConfig
from mcp_server.provider import QuireProxyProvider


def get_provider(request: Request) -> QuireProxyProvider:
    return request.app.state.provider


def get_clients(request: Request) -> ClientRegistry:
    return request.app.state.clients


def get_config(request: Request) -> HttpServerConfig:
    return request.app.state.config
