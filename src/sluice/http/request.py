"""Immutable HTTP request.

Frozen metadata with async body access. The request is honest about
what it is: received data that doesn't change.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from sluice._internal.asgi import Receive, format_remote_addr
from sluice.config import DEFAULT_MAX_MULTIPART_MEMORY
from sluice.errors import ClientDisconnect
from sluice.http.cookies import parse_cookies
from sluice.http.headers import Headers
from sluice.http.query import QueryParams

if TYPE_CHECKING:
    from sluice.http.forms import FormData


async def _empty_receive() -> dict[str, Any]:
    return {"type": "http.request", "body": b"", "more_body": False}


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    Metadata (method, path, headers, etc.) is frozen at creation.
    Body is accessed asynchronously via ``.body()`` or ``.stream()``.

    ``remote_addr`` is the raw ``host:port`` of the socket peer, as the
    transport reported it; nothing here validates it.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    path_params: dict[str, str] = field(default_factory=dict)
    http_version: str = "1.1"
    server: tuple[str, int] | None = None
    client: tuple[str, int] | None = None
    remote_addr: str = ""
    cookies: Mapping[str, str] = field(default_factory=dict)

    # Private: ASGI receive callable for body streaming
    _receive: Receive = _empty_receive

    # Private: mutable cache for the body and the disconnect flag
    # (dict contents are mutable even though the field reference is frozen)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def url(self) -> str:
        """Request target (path + query string)."""
        qs = self.query.raw
        if qs:
            return f"{self.path}?{qs.decode('latin-1')}"
        return self.path

    @property
    def disconnected(self) -> bool:
        """True once the transport reported that the client went away."""
        return bool(self._cache.get("_disconnected"))

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body.

        Result is cached — the ASGI receive is consumed once, then
        the same bytes are returned on subsequent calls.
        """
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks.

        Raises ``ClientDisconnect`` if the client leaves mid-body.
        """
        if self.disconnected:
            raise ClientDisconnect
        while True:
            message = await self._receive()
            if message.get("type") == "http.disconnect":
                self._cache["_disconnected"] = True
                raise ClientDisconnect
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def form(self, max_memory: int = DEFAULT_MAX_MULTIPART_MEMORY) -> FormData:
        """Parse the body as form data (URL-encoded or multipart).

        Result is cached — the body is read and parsed once, then
        the same ``FormData`` is returned on subsequent calls.

        Raises:
            ValueError: If Content-Type is not a form encoding or the
                body is malformed.
        """
        if "_form" in self._cache:
            return self._cache["_form"]

        from sluice.http.forms import parse_form_data

        ct = self.content_type or "application/x-www-form-urlencoded"
        raw = await self.body()
        result = await parse_form_data(raw, ct, max_memory)
        self._cache["_form"] = result
        return result

    def with_path_params(self, path_params: dict[str, str]) -> Request:
        """Copy of this request carrying the router's path parameters.

        The body cache is shared, so a body read through either copy is
        visible to both.
        """
        return replace(self, path_params=path_params)

    # -- Factory --

    @classmethod
    def from_asgi(
        cls,
        scope: Mapping[str, Any],
        receive: Receive,
        path_params: dict[str, str] | None = None,
    ) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        headers = Headers(tuple(scope.get("headers", ())))
        server = scope.get("server")
        client = scope.get("client")
        client_pair = (client[0], client[1]) if client else None
        return cls(
            method=scope["method"],
            path=scope["path"],
            headers=headers,
            query=QueryParams(scope.get("query_string", b"")),
            path_params=path_params or {},
            http_version=scope.get("http_version", "1.1"),
            server=(server[0], server[1]) if server else None,
            client=client_pair,
            remote_addr=format_remote_addr(client_pair),
            cookies=parse_cookies(headers.get("cookie", "")),
            _receive=receive,
        )
