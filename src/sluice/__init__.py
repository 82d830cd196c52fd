"""Sluice — an ASGI request pipeline with deferred, declarative responses.

Handlers receive a ``Context`` and return a ``Response`` built in place;
the server commits it once, after every middleware had its say.

Basic usage::

    from sluice import Context, LoggingMiddleware, Server, respond

    server = Server()
    server.use(LoggingMiddleware())

    def hello(ctx: Context):
        return respond().json({"hello": ctx.query("name") or "world"})

    server.get("/hello", hello)

    api = server.group("/api", require_token)
    api.get("/users/{id}", get_user)

    server.listen_and_serve("0.0.0.0", 8080)  # pip install sluice[server]
"""

__version__ = "0.1.0"
__all__ = [
    "ClientDisconnect",
    "ConfigurationError",
    "Context",
    "ContextConfig",
    "ErrorPayload",
    "Group",
    "HTTPError",
    "Handler",
    "IPResolver",
    "InvariantError",
    "LoggingMiddleware",
    "MethodNotAllowed",
    "Middleware",
    "MissingValueError",
    "Next",
    "NotFound",
    "Request",
    "Response",
    "Server",
    "ServerConfig",
    "SluiceError",
    "ValidationError",
    "Violation",
    "respond",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import sluice`` fast while providing a clean top-level API.
    """
    if name in ("Server", "Group"):
        from sluice import app as _app

        return getattr(_app, name)

    if name == "ServerConfig":
        from sluice.config import ServerConfig

        return ServerConfig

    if name in ("Context", "ContextConfig"):
        from sluice import context as _ctx

        return getattr(_ctx, name)

    if name == "Request":
        from sluice.http.request import Request

        return Request

    if name in ("Response", "respond"):
        from sluice.http import response as _resp

        return getattr(_resp, name)

    if name == "ErrorPayload":
        from sluice.http.payloads import ErrorPayload

        return ErrorPayload

    if name == "IPResolver":
        from sluice.http.ip import IPResolver

        return IPResolver

    if name in ("Handler", "Middleware", "Next"):
        from sluice.middleware import protocol as _mw

        return getattr(_mw, name)

    if name == "LoggingMiddleware":
        from sluice.middleware.logging import LoggingMiddleware

        return LoggingMiddleware

    if name in ("ValidationError", "Violation"):
        from sluice.validation import result as _result

        return getattr(_result, name)

    if name in (
        "ClientDisconnect",
        "ConfigurationError",
        "HTTPError",
        "InvariantError",
        "MethodNotAllowed",
        "MissingValueError",
        "NotFound",
        "SluiceError",
    ):
        from sluice import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
