"""Tests for Response.commit — the single write of a response to a sink."""

import json
import logging

import pytest

from sluice.errors import InvariantError
from sluice.http.response import ResponseSink, respond
from sluice.testing import RecordingSink


class TestCommitOrder:
    @pytest.mark.asyncio
    async def test_headers_then_cookies_then_status_then_body(self) -> None:
        sink = RecordingSink()
        response = (
            respond()
            .cookie("session", "abc")
            .header("X-Request-Id", "7")
            .created({"id": 42})
        )
        await response.commit(sink)

        assert sink.events == ["header", "header", "header", "start", "write"]
        assert sink.headers == [
            ("X-Request-Id", "7"),
            ("Content-Type", "application/json;charset=UTF-8"),
            ("Set-Cookie", "session=abc; Path=/"),
        ]
        assert sink.status == 201
        assert sink.body == b'{"id":42}'
        assert response.committed is True

    @pytest.mark.asyncio
    async def test_repeated_headers_written_per_value(self) -> None:
        sink = RecordingSink()
        await respond().add_header("Link", "</a>").add_header("Link", "</b>").commit(sink)
        assert sink.header_list("link") == ["</a>", "</b>"]

    @pytest.mark.asyncio
    async def test_no_body(self) -> None:
        sink = RecordingSink()
        await respond().no_content().commit(sink)
        assert sink.status == 204
        assert sink.body == b""
        assert sink.header("Content-Type") is None


class TestCommitBody:
    @pytest.mark.asyncio
    async def test_last_body_wins(self) -> None:
        sink = RecordingSink()
        await respond().json({"ignored": True}).html("<p>hi</p>").commit(sink)
        assert sink.body == b"<p>hi</p>"
        assert sink.header_list("Content-Type") == ["text/html;charset=UTF-8"]

    @pytest.mark.asyncio
    async def test_json_null(self) -> None:
        sink = RecordingSink()
        await respond().json(None).commit(sink)
        assert sink.body == b"null"

    @pytest.mark.asyncio
    async def test_json_decodes_to_input(self) -> None:
        value = {"s": "text", "n": 1.5, "i": -3, "b": [True, False], "none": None, "nested": {}}
        sink = RecordingSink()
        await respond().json(value).commit(sink)
        assert json.loads(sink.body) == value

    @pytest.mark.asyncio
    async def test_streaming_body(self) -> None:
        async def write(out: ResponseSink) -> None:
            await out.write(b"data: 1\n\n")
            await out.write(b"data: 2\n\n")

        sink = RecordingSink()
        await respond().body_fn("text/event-stream", write).commit(sink)
        assert sink.events[-3:] == ["start", "write", "write"]
        assert sink.body == b"data: 1\n\ndata: 2\n\n"

    @pytest.mark.asyncio
    async def test_encoding_failure_leaves_sink_unstarted(self) -> None:
        sink = RecordingSink()
        with pytest.raises(TypeError):
            await respond().json({"bad": object()}).commit(sink)
        assert sink.status is None
        assert "start" not in sink.events


class TestCommitOnce:
    @pytest.mark.asyncio
    async def test_second_commit_raises(self) -> None:
        response = respond().text("ok")
        await response.commit(RecordingSink())
        with pytest.raises(InvariantError):
            await response.commit(RecordingSink())


class TestAfterCommit:
    @pytest.mark.asyncio
    async def test_runs_after_write_in_order(self) -> None:
        sink = RecordingSink()
        calls: list[str] = []

        def first() -> None:
            calls.append(f"first:{sink.body.decode()}")

        async def second() -> None:
            calls.append("second")

        await respond().text("ok").after_commit(first).after_commit(second).commit(sink)
        assert calls == ["first:ok", "second"]

    @pytest.mark.asyncio
    async def test_runs_once_when_write_fails(self) -> None:
        sink = RecordingSink(fail_on_write=True)
        calls: list[int] = []
        response = respond().text("ok").after_commit(lambda: calls.append(1))

        with pytest.raises(OSError):
            await response.commit(sink)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failing_hook_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        calls: list[str] = []

        def broken() -> None:
            raise RuntimeError("boom")

        response = respond().after_commit(broken).after_commit(lambda: calls.append("next"))
        with caplog.at_level(logging.ERROR, logger="sluice.server"):
            await response.commit(RecordingSink())

        assert calls == ["next"]
        assert "after-commit callback" in caplog.text


class TestCookieRendering:
    @pytest.mark.asyncio
    async def test_invalid_cookie_not_sent(self) -> None:
        sink = RecordingSink()
        await respond().cookie("bad name", "v").cookie("ok", "1").no_content().commit(sink)
        assert [v for k, v in sink.headers if k == "Set-Cookie"] == ["ok=1; Path=/"]
