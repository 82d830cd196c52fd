"""Deferred HTTP response with a chainable, in-place builder API.

A ``Response`` accumulates status, headers, cookies, one body and a list
of after-commit callbacks. Nothing reaches the wire until ``commit()``
hands everything to a ``ResponseSink`` in one go.

Every mutator returns the same instance so calls chain::

    return (
        respond()
        .created({"id": 42})
        .location("/users/42")
        .cookie("session", token, http_only=True)
    )

Body kinds share one slot: the last of ``json()``, ``html()``,
``text()``, ``body()`` or ``body_fn()`` wins, and the Content-Type it
sets wins with it.
"""

from __future__ import annotations

import dataclasses
import enum
import json as json_module
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from typing import Any, Protocol

from sluice._internal.invoke import invoke
from sluice.errors import InvariantError
from sluice.http.cookies import SetCookie
from sluice.http.dates import format_http_date
from sluice.http.headers import MutableHeaders
from sluice.http.payloads import ErrorPayload

logger = logging.getLogger("sluice.server")

JSON_CONTENT_TYPE = "application/json;charset=UTF-8"
HTML_CONTENT_TYPE = "text/html;charset=UTF-8"
TEXT_CONTENT_TYPE = "text/plain;charset=UTF-8"

# X-Frame-Options
X_FRAME_OPTIONS_DENY = "DENY"
X_FRAME_OPTIONS_SAMEORIGIN = "SAMEORIGIN"

# X-Permitted-Cross-Domain-Policies
X_PERMITTED_CROSS_DOMAIN_POLICIES_NONE = "none"
X_PERMITTED_CROSS_DOMAIN_POLICIES_MASTER_ONLY = "master-only"
X_PERMITTED_CROSS_DOMAIN_POLICIES_BY_CONTENT_TYPE = "by-content-type"
X_PERMITTED_CROSS_DOMAIN_POLICIES_BY_FTP_FILENAME = "by-ftp-filename"
X_PERMITTED_CROSS_DOMAIN_POLICIES_ALL = "all"
X_PERMITTED_CROSS_DOMAIN_POLICIES_NONE_THIS_RESPONSE = "none-this-response"

# Transfer-Encoding
TRANSFER_ENCODING_CHUNKED = "chunked"
TRANSFER_ENCODING_COMPRESS = "compress"
TRANSFER_ENCODING_DEFLATE = "deflate"
TRANSFER_ENCODING_GZIP = "gzip"


class ResponseSink(Protocol):
    """Where a committed response goes.

    ``commit`` calls ``add_header`` for every header line, then
    ``start`` exactly once with the status, then ``write`` for each body
    chunk.
    """

    def add_header(self, name: str, value: str) -> None: ...
    async def start(self, status: int) -> None: ...
    async def write(self, chunk: bytes) -> None: ...


# Streaming body: receives the sink after the status line went out
type BodyWriter = Callable[[ResponseSink], Awaitable[None]]

# Zero-argument hook run after commit; may be sync or async
type AfterCommit = Callable[[], Any]


class BodyKind(enum.Enum):
    """Which body, if any, a Response will write."""

    NONE = "none"
    RAW = "raw"
    JSON = "json"
    STREAM = "stream"


# "No body argument given"; None is a valid JSON body
_UNSET: Any = object()


def _json_default(value: Any) -> Any:
    """Fallback encoder for values the json module can't handle natively."""
    to_json = getattr(value, "__json__", None)
    if callable(to_json):
        return to_json()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return list(value)
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def encode_json(value: Any) -> bytes:
    """Serialize *value* to compact UTF-8 JSON.

    Raises ``TypeError`` or ``ValueError`` when the value can't be encoded.
    """
    return json_module.dumps(
        value,
        default=_json_default,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    ).encode("utf-8")


def _check_non_negative(name: str, value: int) -> None:
    if value < 0:
        msg = f"{name} must be greater than or equal to 0"
        raise InvariantError(msg)


class Response:
    """An HTTP response built in place and written once.

    Single owner: a handler or middleware creates it, the chain passes it
    outward, and the dispatch wrapper commits it. A committed response
    must not be reused.
    """

    __slots__ = (
        "_after_commit",
        "_body",
        "_body_kind",
        "_committed",
        "_cookies",
        "headers",
        "status_code",
    )

    def __init__(self) -> None:
        self.status_code: int = 200
        self.headers: MutableHeaders = MutableHeaders()
        self._cookies: list[SetCookie] = []
        self._body_kind: BodyKind = BodyKind.NONE
        self._body: Any = None
        self._after_commit: list[AfterCommit] = []
        self._committed: bool = False

    def __repr__(self) -> str:
        return f"<Response {self.status_code} body={self._body_kind.value}>"

    # -- Introspection --

    @property
    def cookies(self) -> tuple[SetCookie, ...]:
        """Cookies to be sent, in registration order."""
        return tuple(self._cookies)

    @property
    def body_kind(self) -> BodyKind:
        """Which body kind was set last."""
        return self._body_kind

    @property
    def content(self) -> Any:
        """The pending body: bytes, a JSON value, a writer, or None."""
        return self._body

    @property
    def committed(self) -> bool:
        return self._committed

    # -- Status --

    def status(self, status: int) -> Response:
        """Set the HTTP status code."""
        self.status_code = status
        return self

    def _status_with_body(self, status: int, body: Any) -> Response:
        self.status_code = status
        if body is not _UNSET:
            return self.json(body)
        return self

    def created(self, body: Any = _UNSET) -> Response:
        """201 Created, optionally with a JSON body."""
        return self._status_with_body(201, body)

    def no_content(self) -> Response:
        """204 No Content."""
        self.status_code = 204
        return self

    def moved_permanently(self, location: str) -> Response:
        """301 Moved Permanently with a Location header."""
        self.status_code = 301
        self.headers.set("Location", location)
        return self

    def found(self, location: str) -> Response:
        """302 Found with a Location header."""
        self.status_code = 302
        self.headers.set("Location", location)
        return self

    def not_modified(self) -> Response:
        """304 Not Modified."""
        self.status_code = 304
        return self

    def bad_request(self, body: Any = _UNSET) -> Response:
        """400 Bad Request, optionally with a JSON body."""
        return self._status_with_body(400, body)

    def unauthorized(self, body: Any = _UNSET) -> Response:
        """401 Unauthorized, optionally with a JSON body."""
        return self._status_with_body(401, body)

    def forbidden(self, body: Any = _UNSET) -> Response:
        """403 Forbidden, optionally with a JSON body."""
        return self._status_with_body(403, body)

    def not_found(self, body: Any = _UNSET) -> Response:
        """404 Not Found, optionally with a JSON body."""
        return self._status_with_body(404, body)

    def method_not_allowed(self, body: Any = _UNSET) -> Response:
        """405 Method Not Allowed, optionally with a JSON body."""
        return self._status_with_body(405, body)

    def not_acceptable(self, body: Any = _UNSET) -> Response:
        """406 Not Acceptable, optionally with a JSON body."""
        return self._status_with_body(406, body)

    def proxy_auth_required(self, body: Any = _UNSET) -> Response:
        """407 Proxy Authentication Required, optionally with a JSON body."""
        return self._status_with_body(407, body)

    def conflict(self, body: Any = _UNSET) -> Response:
        """409 Conflict, optionally with a JSON body."""
        return self._status_with_body(409, body)

    def precondition_failed(self) -> Response:
        """412 Precondition Failed."""
        self.status_code = 412
        return self

    def internal_server_error(self, body: Any = _UNSET) -> Response:
        """500 Internal Server Error, optionally with a JSON body."""
        return self._status_with_body(500, body)

    def error(self, exc: BaseException | None) -> Response:
        """500 with an ``InternalServerError`` payload carrying ``str(exc)``."""
        self.status_code = 500
        return self.json(
            ErrorPayload(code="InternalServerError", message=str(exc) if exc is not None else "")
        )

    # -- Generic headers --

    def header(self, name: str, value: str) -> Response:
        """Set a header, replacing earlier values."""
        self.headers.set(name, value)
        return self

    def add_header(self, name: str, value: str) -> Response:
        """Append a header value; earlier values are kept."""
        self.headers.add(name, value)
        return self

    # -- Authentication --

    def www_authenticate(self, challenge: str) -> Response:
        return self.header("WWW-Authenticate", challenge)

    def proxy_authenticate(self, challenge: str) -> Response:
        return self.header("Proxy-Authenticate", challenge)

    # -- Caching --

    def age(self, delta_seconds: int) -> Response:
        """Set ``Age``. Negative values are a programming error."""
        _check_non_negative("delta_seconds", delta_seconds)
        return self.header("Age", str(delta_seconds))

    def cache_control(self, directive: str) -> Response:
        return self.header("Cache-Control", directive)

    def clear_site_data(self, directive: str) -> Response:
        return self.header("Clear-Site-Data", directive)

    def expires(self, when: datetime) -> Response:
        """Set ``Expires``, rendered as an HTTP date in UTC."""
        return self.header("Expires", format_http_date(when))

    def no_vary_search(self, rules: str) -> Response:
        return self.header("No-Vary-Search", rules)

    # -- Conditionals --

    def last_modified(self, when: datetime) -> Response:
        """Set ``Last-Modified``, rendered as an HTTP date in UTC."""
        return self.header("Last-Modified", format_http_date(when))

    def etag(self, etag: str) -> Response:
        """Set ``ETag``; the value is wrapped in quotes."""
        return self.header("ETag", f'"{etag}"')

    def vary(self, *headers: str) -> Response:
        return self.header("Vary", ", ".join(headers))

    # -- Connection management --

    def connection(self, value: str) -> Response:
        return self.header("Connection", value)

    def keep_alive(self, timeout: int, max_requests: int) -> Response:
        return self.header("Keep-Alive", f"timeout={timeout}, max={max_requests}")

    # -- Content negotiation --

    def accept(self, value: str) -> Response:
        return self.header("Accept", value)

    def accept_encoding(self, value: str) -> Response:
        return self.header("Accept-Encoding", value)

    def accept_patch(self, value: str) -> Response:
        return self.header("Accept-Patch", value)

    def accept_post(self, value: str) -> Response:
        return self.header("Accept-Post", value)

    # -- Cookies --

    def cookie(
        self,
        name: str,
        value: str,
        max_age: int | None = None,
        path: str = "/",
        domain: str | None = None,
        secure: bool = False,
        http_only: bool = False,
        *,
        samesite: str | None = None,
    ) -> Response:
        """Add a ``Set-Cookie`` entry. An empty *path* means ``/``."""
        return self.cookie_raw(
            SetCookie(
                name=name,
                value=value,
                max_age=max_age,
                path=path or "/",
                domain=domain,
                secure=secure,
                httponly=http_only,
                samesite=samesite,
            )
        )

    def cookie_raw(self, cookie: SetCookie) -> Response:
        """Add a prepared ``SetCookie``."""
        self._cookies.append(cookie)
        return self

    # -- CORS --

    def access_control_allow_credentials(self) -> Response:
        return self.header("Access-Control-Allow-Credentials", "true")

    def access_control_allow_headers(self, *headers: str) -> Response:
        return self.header("Access-Control-Allow-Headers", ", ".join(headers))

    def access_control_allow_methods(self, *methods: str) -> Response:
        return self.header("Access-Control-Allow-Methods", ", ".join(methods))

    def access_control_allow_origin(self, origin: str) -> Response:
        return self.header("Access-Control-Allow-Origin", origin)

    def access_control_expose_headers(self, *headers: str) -> Response:
        return self.header("Access-Control-Expose-Headers", ", ".join(headers))

    def access_control_max_age(self, max_age: int) -> Response:
        """Set ``Access-Control-Max-Age``. Negative values are a programming error."""
        _check_non_negative("max_age", max_age)
        return self.header("Access-Control-Max-Age", str(max_age))

    def timing_allow_origin(self, origin: str) -> Response:
        return self.header("Timing-Allow-Origin", origin)

    # -- Representation --

    def content_disposition(self, disposition: str) -> Response:
        return self.header("Content-Disposition", disposition)

    def content_length(self, length: int) -> Response:
        return self.header("Content-Length", str(length))

    def content_type(self, content_type: str) -> Response:
        return self.header("Content-Type", content_type)

    def content_encoding(self, encoding: str) -> Response:
        return self.header("Content-Encoding", encoding)

    def content_language(self, language: str) -> Response:
        return self.header("Content-Language", language)

    def content_location(self, location: str) -> Response:
        return self.header("Content-Location", location)

    def preference_applied(self, preference: str) -> Response:
        return self.header("Preference-Applied", preference)

    # -- Proxies and ranges --

    def via(self, via: str) -> Response:
        """Append to ``Via``."""
        return self.add_header("Via", via)

    def accept_ranges(self) -> Response:
        """Append ``Accept-Ranges: bytes``."""
        return self.add_header("Accept-Ranges", "bytes")

    def content_range(self, value: str) -> Response:
        return self.header("Content-Range", value)

    # -- Redirects and misc --

    def location(self, location: str) -> Response:
        return self.header("Location", location)

    def refresh(self, seconds: int, url: str = "") -> Response:
        value = f"{seconds};url={url}" if url else str(seconds)
        return self.header("Refresh", value)

    def referrer_policy(self, policy: str) -> Response:
        return self.header("Referrer-Policy", policy)

    def allow(self, *methods: str) -> Response:
        return self.header("Allow", ", ".join(methods))

    def server(self, server: str) -> Response:
        return self.header("Server", server)

    # -- Security --

    def cross_origin_embedder_policy(self, policy: str) -> Response:
        return self.header("Cross-Origin-Embedder-Policy", policy)

    def cross_origin_opener_policy(self, policy: str) -> Response:
        return self.header("Cross-Origin-Opener-Policy", policy)

    def cross_origin_resource_policy(self, policy: str) -> Response:
        return self.header("Cross-Origin-Resource-Policy", policy)

    def content_security_policy(self, directive: str) -> Response:
        return self.header("Content-Security-Policy", directive)

    def content_security_policy_report_only(self, directive: str) -> Response:
        return self.header("Content-Security-Policy-Report-Only", directive)

    def strict_transport_security(self, value: str) -> Response:
        return self.header("Strict-Transport-Security", value)

    def x_content_type_options(self) -> Response:
        return self.header("X-Content-Type-Options", "nosniff")

    def x_frame_options(self, directive: str) -> Response:
        return self.header("X-Frame-Options", directive)

    def x_permitted_cross_domain_policies(self, directive: str) -> Response:
        return self.header("X-Permitted-Cross-Domain-Policies", directive)

    def x_powered_by(self, application: str) -> Response:
        return self.header("X-Powered-By", application)

    def reporting_endpoints(self, *endpoints: str) -> Response:
        return self.header("Reporting-Endpoints", ", ".join(endpoints))

    # -- Transfer --

    def transfer_encoding(self, *encodings: str) -> Response:
        return self.header("Transfer-Encoding", ", ".join(encodings))

    def trailer(self, header_names: str) -> Response:
        return self.header("Trailer", header_names)

    # -- Other --

    def date(self, when: datetime) -> Response:
        return self.header("Date", format_http_date(when))

    def link(self, link: str) -> Response:
        return self.header("Link", link)

    def retry_after_seconds(self, seconds: int) -> Response:
        return self.header("Retry-After", str(seconds))

    def retry_after_date(self, when: datetime) -> Response:
        return self.header("Retry-After", format_http_date(when))

    def server_timing(self, timing: str) -> Response:
        return self.header("Server-Timing", timing)

    def service_worker_allowed(self, scope: str) -> Response:
        return self.header("Service-Worker-Allowed", scope)

    def source_map(self, url: str) -> Response:
        return self.header("SourceMap", url)

    # -- htmx response headers --

    def hx_location(
        self,
        url: str,
        *,
        target: str | None = None,
        swap: str | None = None,
        source: str | None = None,
    ) -> Response:
        """Tell htmx to navigate via AJAX.

        With only *url*, ``HX-Location`` is the plain URL. With *target*,
        *swap* or *source*, it is a JSON object carrying those fields.
        """
        if target is None and swap is None and source is None:
            return self.header("HX-Location", url)
        obj: dict[str, str] = {"path": url}
        if target is not None:
            obj["target"] = target
        if swap is not None:
            obj["swap"] = swap
        if source is not None:
            obj["source"] = source
        return self.header("HX-Location", json_module.dumps(obj))

    def hx_push_url(self, url: str | bool) -> Response:
        """Push a URL into the history stack, or ``False`` to prevent it."""
        value = url if isinstance(url, str) else ("true" if url else "false")
        return self.header("HX-Push-Url", value)

    def hx_redirect(self, location: str) -> Response:
        return self.header("HX-Redirect", location)

    def hx_refresh(self) -> Response:
        return self.header("HX-Refresh", "true")

    def hx_replace_url(self, url: str | bool) -> Response:
        value = url if isinstance(url, str) else ("true" if url else "false")
        return self.header("HX-Replace-Url", value)

    def hx_reswap(self, strategy: str) -> Response:
        return self.header("HX-Reswap", strategy)

    def hx_retarget(self, selector: str) -> Response:
        return self.header("HX-Retarget", selector)

    def hx_reselect(self, selector: str) -> Response:
        return self.header("HX-Reselect", selector)

    def hx_trigger(self, event: str | dict[str, Any]) -> Response:
        """Trigger a client-side event; dicts carry event payloads."""
        value = event if isinstance(event, str) else json_module.dumps(event)
        return self.header("HX-Trigger", value)

    def hx_trigger_after_settle(self, event: str | dict[str, Any]) -> Response:
        value = event if isinstance(event, str) else json_module.dumps(event)
        return self.header("HX-Trigger-After-Settle", value)

    def hx_trigger_after_swap(self, event: str | dict[str, Any]) -> Response:
        value = event if isinstance(event, str) else json_module.dumps(event)
        return self.header("HX-Trigger-After-Swap", value)

    # -- Body --

    def _set_body(self, kind: BodyKind, body: Any, content_type: str) -> Response:
        self._body_kind = kind
        self._body = body
        self.headers.set("Content-Type", content_type)
        return self

    def json(self, data: Any) -> Response:
        """Serialize *data* as the body at commit time.

        Sets ``Content-Type: application/json;charset=UTF-8``. ``None``
        is written as ``null``.
        """
        return self._set_body(BodyKind.JSON, data, JSON_CONTENT_TYPE)

    def html(self, html: str) -> Response:
        """Use an HTML string as the body (``text/html;charset=UTF-8``)."""
        return self._set_body(BodyKind.RAW, html.encode("utf-8"), HTML_CONTENT_TYPE)

    def text(self, text: str) -> Response:
        """Use a plain-text string as the body (``text/plain;charset=UTF-8``)."""
        return self._set_body(BodyKind.RAW, text.encode("utf-8"), TEXT_CONTENT_TYPE)

    def body(self, content_type: str, data: bytes) -> Response:
        """Use raw bytes as the body with the given Content-Type."""
        return self._set_body(BodyKind.RAW, bytes(data), content_type)

    def body_fn(self, content_type: str, writer: BodyWriter) -> Response:
        """Stream the body: *writer* receives the sink after the status line."""
        return self._set_body(BodyKind.STREAM, writer, content_type)

    # -- After commit --

    def after_commit(self, fn: AfterCommit) -> Response:
        """Run *fn* once the response has been written (or failed to be)."""
        self._after_commit.append(fn)
        return self

    # -- Commit --

    async def commit(self, sink: ResponseSink) -> None:
        """Write headers, cookies, status and body to *sink*.

        Headers go out one line per value, in accumulation order, followed
        by one ``Set-Cookie`` per cookie. A JSON body is serialized before
        the status line, so an encoding failure leaves the sink unstarted.
        Failures propagate to the caller. After-commit callbacks run in
        every case, in registration order.
        """
        if self._committed:
            msg = "response already committed"
            raise InvariantError(msg)
        self._committed = True
        try:
            for name, value in self.headers.items():
                sink.add_header(name, value)
            for cookie in self._cookies:
                if rendered := cookie.to_header_value():
                    sink.add_header("Set-Cookie", rendered)

            if self._body_kind is BodyKind.STREAM:
                await sink.start(self.status_code)
                await self._body(sink)
                return

            if self._body_kind is BodyKind.JSON:
                payload = encode_json(self._body)
            elif self._body_kind is BodyKind.RAW:
                payload = self._body
            else:
                payload = b""
            await sink.start(self.status_code)
            await sink.write(payload)
        finally:
            await self._run_after_commit()

    async def _run_after_commit(self) -> None:
        for fn in self._after_commit:
            try:
                await invoke(fn)
            except Exception:
                logger.exception("after-commit callback %r failed", fn)


def respond() -> Response:
    """A fresh ``Response``: status 200, no headers, no body."""
    return Response()
