"""Sluice exception hierarchy.

Shared across Router, Server, Context, and middleware so every module
raises and catches the same types.

Two families matter to the dispatch pipeline:

- ``HTTPError`` maps directly onto a response (404, 405, ...).
- ``InvariantError`` signals broken wiring (a handler that returned
  nothing, a negative max-age, a missing ``must_get`` key). It is never
  turned into a response; it aborts the one request that hit it.
"""

from dataclasses import dataclass


class SluiceError(Exception):
    """Base for all sluice-specific errors."""


class ConfigurationError(SluiceError):
    """Raised when server configuration or a route pattern is invalid."""


@dataclass(frozen=True, slots=True)
class HTTPError(SluiceError):
    """An error that maps directly to an HTTP status code.

    Raised by the router before the middleware chain runs.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818 — conventional name in web frameworks
    """404 — no route matched the request path."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818 — conventional name in web frameworks
    """405 — route exists but not for this HTTP method.

    Includes an ``Allow`` header listing the valid methods.
    """

    def __init__(self, allowed: frozenset[str], detail: str = "") -> None:
        allow_value = ", ".join(sorted(allowed))
        default_detail = f"Method not allowed. Allowed methods: {allow_value}"
        super().__init__(
            status=405,
            detail=detail or default_detail,
            headers=(("Allow", allow_value),),
        )


class InvariantError(SluiceError):
    """A programming error in route, middleware, or handler wiring.

    The dispatch wrapper lets this propagate untouched so the failure is
    loud and confined to the request that triggered it.
    """


class MissingValueError(InvariantError, KeyError):
    """``Context.must_get`` was asked for a key nothing in the chain set."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"didn't find key {key!r} in context")

    def __str__(self) -> str:
        return f"didn't find key {self.key!r} in context"


class ClientDisconnect(SluiceError):
    """The client went away before the request body was fully received."""
