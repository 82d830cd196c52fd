"""ASGI response sink — turns ``Response.commit`` calls into ASGI messages.

``Response.commit`` talks to a ``ResponseSink``; this module provides
the one that writes to an ASGI ``send`` callable:

- ``add_header`` collects raw header pairs until the status goes out,
- ``start`` sends ``http.response.start``,
- ``write`` sends each chunk as ``http.response.body`` with
  ``more_body=True``,
- ``finish`` closes the stream with an empty final body message.
"""

import logging

from sluice._internal.asgi import Send
from sluice.errors import InvariantError

logger = logging.getLogger("sluice.server")


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


class ASGISink:
    """A ``ResponseSink`` over ASGI ``send``.

    Writing before ``start`` implies a 200, as on any HTTP server.
    Body chunks for 1xx/204/304 responses are dropped. Headers added
    after ``start`` cannot reach the wire and are dropped with a debug
    log record.
    """

    __slots__ = ("_body_allowed", "_finished", "_headers", "_send", "_status")

    def __init__(self, send: Send) -> None:
        self._send = send
        self._headers: list[tuple[bytes, bytes]] = []
        self._status: int | None = None
        self._body_allowed = True
        self._finished = False

    @property
    def started(self) -> bool:
        return self._status is not None

    @property
    def status(self) -> int | None:
        """The status sent, or ``None`` before ``start``."""
        return self._status

    def add_header(self, name: str, value: str) -> None:
        if self._status is not None:
            logger.debug("header %s added after the response started; dropped", name)
            return
        self._headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    async def start(self, status: int) -> None:
        if self._status is not None:
            msg = f"response already started with status {self._status}"
            raise InvariantError(msg)
        self._status = status
        self._body_allowed = _body_allowed(status)
        await self._send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": self._headers,
            }
        )

    async def write(self, chunk: bytes) -> None:
        if self._status is None:
            await self.start(200)
        if not chunk or not self._body_allowed:
            return
        await self._send(
            {
                "type": "http.response.body",
                "body": bytes(chunk),
                "more_body": True,
            }
        )

    async def finish(self) -> None:
        """End the response.

        A response that never started (its commit failed before the status
        line) goes out as a bodiless 500.
        """
        if self._finished:
            return
        self._finished = True
        if self._status is None:
            self._headers = []
            await self.start(500)
        await self._send(
            {
                "type": "http.response.body",
                "body": b"",
                "more_body": False,
            }
        )
