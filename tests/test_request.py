"""Tests for sluice.http.request — immutable request and body access."""

from typing import Any

import pytest

from sluice.errors import ClientDisconnect
from sluice.http.request import Request


def _make_scope(**overrides: Any) -> dict[str, Any]:
    scope: dict[str, Any] = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": [],
        "http_version": "1.1",
        "server": ("localhost", 8000),
        "client": ("127.0.0.1", 50000),
    }
    scope.update(overrides)
    return scope


def _make_receive(*messages: dict[str, Any]):
    queue = list(messages)

    async def receive() -> dict[str, Any]:
        return queue.pop(0)

    return receive


def _body(data: bytes, more: bool = False) -> dict[str, Any]:
    return {"type": "http.request", "body": data, "more_body": more}


class TestFromASGI:
    def test_metadata(self) -> None:
        scope = _make_scope(
            method="POST",
            path="/users",
            query_string=b"page=2",
            headers=[(b"content-type", b"application/json"), (b"cookie", b"sid=abc")],
        )
        request = Request.from_asgi(scope, _make_receive())
        assert request.method == "POST"
        assert request.path == "/users"
        assert request.query["page"] == "2"
        assert request.url == "/users?page=2"
        assert request.content_type == "application/json"
        assert request.cookies == {"sid": "abc"}
        assert request.remote_addr == "127.0.0.1:50000"

    def test_ipv6_remote_addr(self) -> None:
        request = Request.from_asgi(_make_scope(client=("::1", 9000)), _make_receive())
        assert request.remote_addr == "[::1]:9000"

    def test_missing_client(self) -> None:
        request = Request.from_asgi(_make_scope(client=None), _make_receive())
        assert request.client is None
        assert request.remote_addr == ""


class TestBody:
    @pytest.mark.asyncio
    async def test_chunks_joined_and_cached(self) -> None:
        receive = _make_receive(_body(b"a", more=True), _body(b"b"))
        request = Request.from_asgi(_make_scope(method="POST"), receive)
        assert await request.body() == b"ab"
        assert await request.body() == b"ab"

    @pytest.mark.asyncio
    async def test_disconnect(self) -> None:
        receive = _make_receive(_body(b"a", more=True), {"type": "http.disconnect"})
        request = Request.from_asgi(_make_scope(method="POST"), receive)
        with pytest.raises(ClientDisconnect):
            await request.body()
        assert request.disconnected is True
        with pytest.raises(ClientDisconnect):
            await request.body()

    @pytest.mark.asyncio
    async def test_path_params_copy_shares_cache(self) -> None:
        request = Request.from_asgi(_make_scope(method="POST"), _make_receive(_body(b"x")))
        routed = request.with_path_params({"id": "1"})
        assert await routed.body() == b"x"
        assert await request.body() == b"x"
        assert request.path_params == {}
        assert routed.path_params == {"id": "1"}
