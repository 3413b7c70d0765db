"""Tests for the Quire token endpoint client."""
from urllib.parse import parse_qs

import httpx
import pytest

from mcp_server.upstream import (
    QuireTokenClient,
    UpstreamNetworkError,
    UpstreamRejectedError,
    parse_token_response,
)


def _client(handler):
    return QuireTokenClient("quire-id", "quire-secret", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_exchange_code_posts_form_with_credentials():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 2592000})

    tokens = await _client(handler).exchange_code("the-code")
    assert seen["url"] == "https://quire.io/oauth/token"
    assert seen["form"] == {
        "grant_type": ["authorization_code"],
        "code": ["the-code"],
        "client_id": ["quire-id"],
        "client_secret": ["quire-secret"],
    }
    assert tokens.access_token == "at"
    assert tokens.refresh_token == "rt"
    assert tokens.expires_in == 2592000


@pytest.mark.asyncio
async def test_refresh_sends_refresh_grant():
    seen = {}

    def handler(request):
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"access_token": "at2"})

    tokens = await _client(handler).refresh("old-rt")
    assert seen["form"]["grant_type"] == ["refresh_token"]
    assert seen["form"]["refresh_token"] == ["old-rt"]
    assert tokens.refresh_token is None


@pytest.mark.asyncio
async def test_rejection_keeps_truncated_body():
    def handler(request):
        return httpx.Response(400, text="x" * 500)

    with pytest.raises(UpstreamRejectedError) as exc_info:
        await _client(handler).exchange_code("bad")
    assert exc_info.value.status_code == 400
    assert len(exc_info.value.body) == 200
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_transport_failure_is_retryable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamNetworkError) as exc_info:
        await _client(handler).refresh("rt")
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_non_json_success_is_rejection():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(UpstreamRejectedError):
        await _client(handler).exchange_code("code")


def test_parse_token_response_requires_access_token():
    with pytest.raises(UpstreamRejectedError):
        parse_token_response({"refresh_token": "rt"})


@pytest.mark.parametrize("expires_in", ["soon", [3600], {"s": 1}])
def test_parse_token_response_rejects_bad_expires_in(expires_in):
    with pytest.raises(UpstreamRejectedError) as exc_info:
        parse_token_response({"access_token": "at", "expires_in": expires_in})
    assert exc_info.value.body == "invalid expires_in"


def test_parse_token_response_accepts_numeric_string_expires_in():
    assert parse_token_response({"access_token": "at", "expires_in": "3600"}).expires_in == 3600
