"""Per-request context handed to every middleware and handler.

One ``Context`` is created for each inbound request, right before the
middleware chain runs, and dropped once the response is committed. It is
never shared between requests, so nothing in here locks.

It wraps the immutable ``Request`` and adds:

- memoized client-IP resolution (``client_ip`` / ``remote_ip``),
- memoized form parsing honouring the multipart memory threshold,
- typed request-header accessors,
- conditional-request helpers that return a ready ``Response`` when the
  precondition fails and ``None`` when the handler should proceed,
- JSON body binding with validation,
- a request-scoped key/value store for middleware to pass data inward.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
import types
from collections import abc
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints
from urllib.parse import unquote_plus

from sluice.config import DEFAULT_MAX_MULTIPART_MEMORY
from sluice.errors import ClientDisconnect, InvariantError, MissingValueError
from sluice.http.dates import parse_http_date, truncate_to_seconds
from sluice.http.forms import FORM_URLENCODED, MULTIPART_FORM_DATA, FormData, media_type
from sluice.http.ip import IPResolver
from sluice.http.payloads import ErrorPayload
from sluice.http.request import Request
from sluice.http.response import Response, respond
from sluice.validation.result import ValidationError

logger = logging.getLogger("sluice.forms")

# Sec-Fetch-Site
SEC_FETCH_SITE_CROSS_SITE = "cross-site"
SEC_FETCH_SITE_SAME_ORIGIN = "same-origin"
SEC_FETCH_SITE_SAME_SITE = "same-site"
SEC_FETCH_SITE_NONE = "none"

# Sec-Fetch-Mode
SEC_FETCH_MODE_CORS = "cors"
SEC_FETCH_MODE_NAVIGATE = "navigate"
SEC_FETCH_MODE_NO_CORS = "no-cors"
SEC_FETCH_MODE_SAME_ORIGIN = "same-origin"
SEC_FETCH_MODE_WEBSOCKET = "websocket"

_INT_RE = re.compile(r"[+-]?[0-9]+")
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# Oldest possible timestamp; the maximum of no timestamps
_EPOCH_MIN = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class ContextConfig:
    """The slice of server configuration a context needs.

    Shared read-only by every in-flight request; the server builds a new
    one whenever its configuration snapshot changes.
    """

    max_multipart_memory: int = DEFAULT_MAX_MULTIPART_MEMORY
    ip_resolver: IPResolver = field(default_factory=IPResolver)


def error_response(status: int, code: str, message: str) -> Response:
    """A response with *status* and an ``ErrorPayload`` JSON body."""
    return respond().status(status).json(ErrorPayload(code=code, message=message))


def _invalid_value(key: str) -> Response:
    return respond().bad_request(
        ErrorPayload(code="BadRequest", message=f"invalid value for '{key}'")
    )


def _latest(times: tuple[datetime, ...]) -> datetime:
    latest = _EPOCH_MIN
    for candidate in times:
        if candidate.tzinfo is None:
            candidate = candidate.replace(tzinfo=UTC)
        if candidate > latest:
            latest = candidate
    return truncate_to_seconds(latest)


def _type_name(hint: Any) -> str:
    return getattr(hint, "__name__", None) or str(hint)


def _mismatch(value: Any, hint: Any, where: str) -> TypeError:
    kind = "null" if value is None else type(value).__name__
    target = f"field {where!r}" if where else "value"
    return TypeError(f"cannot bind {kind} into {target} of type {_type_name(hint)}")


def _field_hints(datacls: type[Any]) -> dict[str, Any]:
    try:
        return get_type_hints(datacls)
    except NameError:
        # Unresolvable forward reference: only check what is already a type
        return {
            f.name: (Any if isinstance(f.type, str) else f.type)
            for f in dataclasses.fields(datacls)
        }


def _bind(payload: Any, hint: Any, where: str = "") -> Any:
    """Build a value of type *hint* from decoded JSON.

    Dataclasses are built from an object's keys; unknown keys are
    ignored and missing required fields raise ``TypeError``. Every field
    is checked against its annotation, recursing into containers and
    nested dataclasses. A mismatch raises ``TypeError``.
    """
    if hint is Any or hint is object:
        return payload

    origin = get_origin(hint)
    args = get_args(hint)

    if origin is Union or origin is types.UnionType:
        for arm in args:
            try:
                return _bind(payload, arm, where)
            except TypeError:
                continue
        raise _mismatch(payload, hint, where)

    if origin is Literal:
        if payload in args:
            return payload
        raise _mismatch(payload, hint, where)

    if hint is None or hint is type(None):
        if payload is None:
            return None
        raise _mismatch(payload, hint, where)

    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        if not isinstance(payload, dict):
            raise _mismatch(payload, hint, where)
        hints = _field_hints(hint)
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(hint):
            if f.init and f.name in payload:
                name = f"{where}.{f.name}" if where else f.name
                kwargs[f.name] = _bind(payload[f.name], hints.get(f.name, Any), name)
        return hint(**kwargs)

    # JSON numbers: bool is not an int here, an int is a valid float
    if hint is bool:
        if isinstance(payload, bool):
            return payload
        raise _mismatch(payload, hint, where)
    if hint is int:
        if isinstance(payload, int) and not isinstance(payload, bool):
            return payload
        raise _mismatch(payload, hint, where)
    if hint is float:
        if isinstance(payload, (int, float)) and not isinstance(payload, bool):
            return float(payload)
        raise _mismatch(payload, hint, where)

    container = origin or hint
    if not isinstance(container, type):
        # TypeVar, NewType and the like: nothing to check against
        return payload

    if issubclass(container, (list, tuple, set, frozenset)) or container in (
        abc.Sequence,
        abc.MutableSequence,
        abc.Set,
        abc.MutableSet,
    ):
        if not isinstance(payload, list):
            raise _mismatch(payload, hint, where)
        if container is tuple and args and args[-1] is not Ellipsis:
            if len(args) != len(payload):
                raise _mismatch(payload, hint, where)
            return tuple(
                _bind(item, arm, f"{where}[{i}]")
                for i, (item, arm) in enumerate(zip(payload, args, strict=True))
            )
        item_hint = args[0] if args else Any
        items = [_bind(item, item_hint, f"{where}[{i}]") for i, item in enumerate(payload)]
        if container in (list, abc.Sequence, abc.MutableSequence):
            return items
        if container in (abc.Set, abc.MutableSet):
            return set(items)
        return container(items)

    if issubclass(container, dict) or container in (abc.Mapping, abc.MutableMapping):
        if not isinstance(payload, dict):
            raise _mismatch(payload, hint, where)
        value_hint = args[1] if len(args) == 2 else Any
        return {
            key: _bind(item, value_hint, f"{where}.{key}" if where else key)
            for key, item in payload.items()
        }

    if isinstance(payload, container):
        return payload
    raise _mismatch(payload, hint, where)


class Context:
    """Request-scoped facade over ``Request`` for middleware and handlers."""

    __slots__ = ("_form", "_ip_addresses", "_values", "config", "request")

    def __init__(self, request: Request, config: ContextConfig | None = None) -> None:
        self.request = request
        self.config = config or ContextConfig()
        self._ip_addresses: list[str] | None = None
        self._form: FormData | None = None
        self._values: dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"<Context {self.request.method} {self.request.path}>"

    # -- Client IP --

    def _addresses(self) -> list[str]:
        if self._ip_addresses is None:
            self._ip_addresses = self.config.ip_resolver.resolve(self.request)
        return self._ip_addresses

    @property
    def client_ip(self) -> str:
        """The most-forwarded address: the client as claimed by trusted proxies.

        Without trusted headers this is the socket peer.
        """
        return self._addresses()[0]

    @property
    def remote_ip(self) -> str:
        """The nearest hop: the socket peer (or the trusted header naming it)."""
        return self._addresses()[-1]

    # -- Path and query --

    def path_value(self, name: str) -> str:
        """Value of the ``{name}`` path placeholder, or ``""``."""
        return self.request.path_params.get(name, "")

    def has_query(self, key: str) -> bool:
        return key in self.request.query

    def query(self, key: str) -> str:
        """First value of query parameter *key*, or ``""``."""
        return self.request.query.get(key) or ""

    def int_query(self, key: str) -> tuple[int, Response | None]:
        return self.int_query_or_default(key, 0)

    def int_query_or_default(self, key: str, default: int) -> tuple[int, Response | None]:
        """Parse query parameter *key* as an integer.

        Returns ``(value, None)``, or ``(0, response)`` with a 400 ready to
        return when the value is not a base-10 integer. A missing or empty
        parameter yields *default*.
        """
        raw = self.query(key)
        if not raw:
            return default, None
        if not _INT_RE.fullmatch(raw):
            return 0, _invalid_value(key)
        return int(raw), None

    def string_query(self, key: str) -> tuple[str, Response | None]:
        return self.string_query_or_default(key, "")

    def string_query_or_default(self, key: str, default: str) -> tuple[str, Response | None]:
        """Query parameter *key*, unescaped once more.

        Returns ``("", response)`` with a 400 when the value holds a
        malformed percent-escape.
        """
        raw = self.query(key)
        if not raw:
            return default, None
        if _BAD_ESCAPE_RE.search(raw):
            return "", _invalid_value(key)
        return unquote_plus(raw), None

    # -- Headers --

    def header(self, name: str) -> str:
        """First value of header *name* (case-insensitive), or ``""``."""
        return self.request.headers.get(name) or ""

    def header_list(self, name: str) -> list[str]:
        """Every value of header *name*, in arrival order."""
        return self.request.headers.get_list(name)

    def _date_header(self, name: str) -> datetime | None:
        raw = self.header(name)
        if not raw:
            return None
        return parse_http_date(raw)

    @property
    def authorization(self) -> str:
        return self.header("Authorization")

    @property
    def proxy_authorization(self) -> str:
        return self.header("Proxy-Authorization")

    @property
    def cache_control(self) -> str:
        return self.header("Cache-Control")

    @property
    def if_match(self) -> str:
        return self.header("If-Match")

    @property
    def if_none_match(self) -> str:
        return self.header("If-None-Match")

    @property
    def if_modified_since(self) -> datetime | None:
        """Parsed ``If-Modified-Since``; ``None`` when absent.

        Raises ``ValueError`` when the header is not an HTTP date.
        """
        return self._date_header("If-Modified-Since")

    @property
    def if_unmodified_since(self) -> datetime | None:
        """Parsed ``If-Unmodified-Since``; ``None`` when absent.

        Raises ``ValueError`` when the header is not an HTTP date.
        """
        return self._date_header("If-Unmodified-Since")

    @property
    def connection(self) -> str:
        return self.header("Connection")

    @property
    def keep_alive(self) -> str:
        return self.header("Keep-Alive")

    @property
    def accept(self) -> str:
        return self.header("Accept")

    @property
    def accept_encoding(self) -> str:
        return self.header("Accept-Encoding")

    @property
    def accept_language(self) -> str:
        return self.header("Accept-Language")

    @property
    def expect(self) -> str:
        return self.header("Expect")

    @property
    def max_forwards(self) -> int | None:
        """Parsed ``Max-Forwards``; raises ``ValueError`` if not an integer."""
        raw = self.header("Max-Forwards")
        if not raw:
            return None
        if not _INT_RE.fullmatch(raw):
            msg = f"invalid Max-Forwards value {raw!r}"
            raise ValueError(msg)
        return int(raw)

    @property
    def access_control_request_headers(self) -> list[str] | None:
        raw = self.header("Access-Control-Request-Headers")
        if not raw:
            return None
        return raw.split(", ")

    @property
    def access_control_request_method(self) -> str:
        return self.header("Access-Control-Request-Method")

    @property
    def origin(self) -> str:
        return self.header("Origin")

    @property
    def content_disposition(self) -> str:
        return self.header("Content-Disposition")

    @property
    def content_length(self) -> int | None:
        """Parsed ``Content-Length``; ``None`` when absent or malformed."""
        raw = self.header("Content-Length")
        if not _INT_RE.fullmatch(raw):
            return None
        return int(raw)

    @property
    def content_type(self) -> str:
        return self.header("Content-Type")

    @property
    def content_encoding(self) -> str:
        return self.header("Content-Encoding")

    @property
    def content_language(self) -> str:
        return self.header("Content-Language")

    @property
    def content_location(self) -> str:
        return self.header("Content-Location")

    @property
    def prefer(self) -> str:
        return self.header("Prefer")

    @property
    def forwarded(self) -> str:
        return self.header("Forwarded")

    @property
    def via(self) -> str:
        return self.header("Via")

    @property
    def range(self) -> str:
        return self.header("Range")

    @property
    def if_range(self) -> str:
        return self.header("If-Range")

    @property
    def from_(self) -> str:
        return self.header("From")

    @property
    def host(self) -> str:
        return self.header("Host")

    @property
    def referer(self) -> str:
        return self.header("Referer")

    @property
    def user_agent(self) -> str:
        return self.header("User-Agent")

    @property
    def server(self) -> str:
        return self.header("Server")

    @property
    def upgrade_insecure_requests(self) -> bool:
        return bool(self.header("Upgrade-Insecure-Requests"))

    @property
    def sec_fetch_site(self) -> str:
        return self.header("Sec-Fetch-Site")

    @property
    def sec_fetch_mode(self) -> str:
        return self.header("Sec-Fetch-Mode")

    @property
    def sec_fetch_user(self) -> bool:
        return self.header("Sec-Fetch-User") == "?1"

    @property
    def sec_fetch_dest(self) -> str:
        return self.header("Sec-Fetch-Dest")

    @property
    def sec_purpose(self) -> str:
        return self.header("Sec-Purpose")

    @property
    def service_worker_navigation_preload(self) -> str:
        return self.header("Service-Worker-Navigation-Preload")

    @property
    def service_worker(self) -> bool:
        return self.header("Service-Worker") == "script"

    @property
    def transfer_encoding(self) -> str:
        return self.header("Transfer-Encoding")

    @property
    def te(self) -> str:
        return self.header("TE")

    @property
    def trailer(self) -> str:
        return self.header("Trailer")

    @property
    def date(self) -> datetime | None:
        """Parsed ``Date``; ``None`` when absent or malformed."""
        try:
            return self._date_header("Date")
        except ValueError:
            return None

    @property
    def link(self) -> str:
        return self.header("Link")

    # -- htmx request headers --

    @property
    def hx_boosted(self) -> bool:
        return self.header("HX-Boosted") == "true"

    @property
    def hx_current_url(self) -> str:
        return self.header("HX-Current-URL")

    @property
    def hx_history_restore_request(self) -> bool:
        return self.header("HX-History-Restore-Request") == "true"

    @property
    def hx_prompt(self) -> str:
        return self.header("HX-Prompt")

    @property
    def hx_request(self) -> bool:
        return self.header("HX-Request") == "true"

    @property
    def hx_target(self) -> str:
        return self.header("HX-Target")

    @property
    def hx_trigger_name(self) -> str:
        return self.header("HX-Trigger-Name")

    @property
    def hx_trigger(self) -> str:
        return self.header("HX-Trigger")

    # -- Cookies --

    @property
    def cookies(self) -> Mapping[str, str]:
        return self.request.cookies

    def cookie(self, name: str) -> str | None:
        """Value of cookie *name*, or ``None`` if the request lacks it."""
        return self.request.cookies.get(name)

    # -- Conditional requests --

    def conditional_if_match(self, etag: str) -> Response | None:
        """412 unless ``If-Match`` is absent or names *etag*."""
        remote = self.if_match
        if not remote or remote == f'"{etag}"':
            return None
        return respond().precondition_failed()

    def conditional_if_none_match(self, etag: str) -> Response | None:
        """304 (GET/HEAD) or 412 (other methods) when ``If-None-Match`` names *etag*."""
        remote = self.if_none_match
        if not remote or remote != f'"{etag}"':
            return None
        if self.request.method in ("GET", "HEAD"):
            return respond().not_modified().etag(etag)
        return respond().precondition_failed()

    def conditional_if_modified_since(self, *last_modified: datetime) -> Response | None:
        """304 when the newest of *last_modified* is not after ``If-Modified-Since``.

        A malformed header yields a 400.
        """
        try:
            since = self.if_modified_since
        except ValueError:
            return _invalid_value("If-Modified-Since")
        if since is None:
            return None
        latest = _latest(last_modified)
        if latest > since:
            return None
        return respond().not_modified().last_modified(latest)

    def conditional_if_unmodified_since(self, *last_modified: datetime) -> Response | None:
        """412 when the newest of *last_modified* is after ``If-Unmodified-Since``.

        A malformed header yields a 400.
        """
        try:
            since = self.if_unmodified_since
        except ValueError:
            return _invalid_value("If-Unmodified-Since")
        if since is None:
            return None
        if _latest(last_modified) > since:
            return respond().precondition_failed()
        return None

    # -- Body --

    @property
    def disconnected(self) -> bool:
        """True once the client went away while the body was being read."""
        return self.request.disconnected

    async def get_raw_data(self) -> bytes:
        """The whole request body. Raises ``ClientDisconnect``."""
        return await self.request.body()

    async def bind_json[T](self, datacls: type[T]) -> T | Response:
        """Decode the JSON body into *datacls*, or return the error response.

        On success, returns the bound value. If it has a ``validate()``
        method, that runs too: a ``ValidationError`` (returned or raised)
        becomes a 400 with the structured violations, any other failure a
        generic 400. An empty body, undecodable JSON or a shape that
        doesn't fit *datacls* are 400s as well; a failed body read is a
        500.

        Usage::

            data = await ctx.bind_json(CreateUser)
            if isinstance(data, Response):
                return data
        """
        try:
            raw = await self.request.body()
        except ClientDisconnect as exc:
            return respond().error(exc)
        if not raw:
            return error_response(400, "RequestBodyMissing", "request body is missing")
        try:
            value = _bind(json.loads(raw), datacls)
        except (ValueError, TypeError) as exc:
            return error_response(400, "InvalidRequestBody", str(exc))

        validate = getattr(value, "validate", None)
        if not callable(validate):
            return value
        try:
            result = validate()
        except ValidationError as exc:
            result = exc
        except InvariantError:
            raise
        except Exception as exc:
            return error_response(400, "BadRequest", str(exc))
        if isinstance(result, ValidationError):
            return respond().bad_request(result)
        if isinstance(result, Exception):
            return error_response(400, "BadRequest", str(result))
        return value

    async def form_values(self) -> FormData:
        """URL-encoded or multipart form fields, parsed once per request.

        Uploaded files beyond ``max_multipart_memory`` bytes spill to a
        temporary file. Requests that carry no form yield an empty
        ``FormData``; a malformed form is logged and yields one too.
        """
        if self._form is not None:
            return self._form
        kind = media_type(self.request.content_type or "")
        form = FormData()
        if kind in (FORM_URLENCODED, MULTIPART_FORM_DATA):
            try:
                form = await self.request.form(self.config.max_multipart_memory)
            except (ValueError, ClientDisconnect) as exc:
                logger.error("unable to parse multipart form: %s", exc)
        self._form = form
        return form

    def close(self) -> None:
        """Release uploaded files of a parsed multipart form."""
        if self._form is not None:
            self._form.close()

    # -- Request-scoped values --

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* for later middleware and the handler."""
        self._values[key] = value

    def get[T](self, key: str, cls: type[T] | None = None) -> tuple[Any, bool]:
        """Look up *key*: ``(value, True)`` if set, ``(None, False)`` if not.

        With *cls*, a stored value of another type raises ``InvariantError``.
        """
        if key not in self._values:
            return None, False
        value = self._values[key]
        if cls is not None and not isinstance(value, cls):
            msg = (
                f"context value {key!r} is {type(value).__name__}, "
                f"not {cls.__name__}"
            )
            raise InvariantError(msg)
        return value, True

    def must_get[T](self, key: str, cls: type[T] | None = None) -> Any:
        """Value stored under *key*.

        For values earlier middleware guarantees to set. A missing key is
        a wiring bug and raises ``MissingValueError``.
        """
        value, found = self.get(key, cls)
        if not found:
            raise MissingValueError(key)
        return value
