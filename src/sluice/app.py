"""Sluice server: route registration, middleware, and the ASGI entry point.

Mutable during setup (routes, middleware, configuration). Frozen at
runtime when ``listen_and_serve()`` or ``__call__()`` is first invoked.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable
from typing import Any

from sluice._internal.asgi import Receive, Scope, Send
from sluice._internal.invoke import invoke
from sluice.config import ServerConfig
from sluice.context import ContextConfig
from sluice.middleware.chain import compose
from sluice.middleware.protocol import Handler, Middleware
from sluice.routing.route import Route
from sluice.routing.router import Router
from sluice.server.handler import handle_request

HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


def _join(base: str, path: str) -> str:
    return (base + path) or "/"


class _Routes:
    """Verb shorthands shared by ``Server`` and ``Group``.

    Subclasses provide ``_handle(method, path, handler, middleware)``.
    """

    __slots__ = ()

    def _handle(
        self,
        methods: frozenset[str],
        path: str,
        handler: Handler,
        middleware: tuple[Middleware, ...],
        name: str | None = None,
    ) -> None:
        raise NotImplementedError

    def get(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"GET"}), path, handler, middleware)

    def head(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"HEAD"}), path, handler, middleware)

    def post(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"POST"}), path, handler, middleware)

    def put(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"PUT"}), path, handler, middleware)

    def patch(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"PATCH"}), path, handler, middleware)

    def delete(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"DELETE"}), path, handler, middleware)

    def options(self, path: str, handler: Handler, *middleware: Middleware) -> None:
        self._handle(frozenset({"OPTIONS"}), path, handler, middleware)

    def route(
        self,
        path: str,
        *,
        methods: list[str] | None = None,
        middleware: list[Middleware] | None = None,
        name: str | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register a route handler via decorator.

        Args:
            path: URL path pattern. Use ``{param}`` for path parameters.
            methods: HTTP methods. Defaults to ``["GET"]``.
            middleware: Middleware for this route only, innermost last.
            name: Optional route name, kept for introspection.
        """
        wanted = frozenset(m.upper() for m in (methods or ["GET"]))
        unknown = wanted - HTTP_METHODS
        if unknown:
            msg = f"Unsupported HTTP method(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        def decorator(func: Handler) -> Handler:
            self._handle(wanted, path, func, tuple(middleware or ()), name)
            return func

        return decorator


class Group(_Routes):
    """Routes sharing a path prefix and a middleware stack.

    The stack is copied when the group is created: middleware added to
    the parent later does not reach the group's routes.
    """

    __slots__ = ("_middleware", "_prefix", "_server")

    def __init__(self, server: Server, prefix: str, middleware: tuple[Middleware, ...]) -> None:
        self._server = server
        self._prefix = prefix
        self._middleware = middleware

    def __repr__(self) -> str:
        return f"<Group {self._prefix!r} middleware={len(self._middleware)}>"

    @property
    def prefix(self) -> str:
        return self._prefix

    def group(self, path: str, *middleware: Middleware) -> Group:
        """A nested group under ``prefix + path``."""
        return Group(self._server, self._prefix + path, self._middleware + middleware)

    def _handle(
        self,
        methods: frozenset[str],
        path: str,
        handler: Handler,
        middleware: tuple[Middleware, ...],
        name: str | None = None,
    ) -> None:
        self._server._register(
            methods, _join(self._prefix, path), handler, self._middleware + middleware, name
        )


class Server(_Routes):
    """The sluice server.

    Mutable during setup (routes, middleware, configuration).
    Frozen at runtime when ``listen_and_serve()`` or ``__call__()`` is
    first invoked.

    Each route's middleware chain is composed when the route is
    registered, from the server middleware present at that moment plus
    the route's own. ``use()`` after registering a route does not reach
    that route.

    Thread safety:
        The setup phase is single-threaded (registration at import time).
        Configuration is an immutable snapshot; setters swap it whole.
        The freeze transition uses a Lock + double-check so exactly one
        thread compiles the router, even when several ASGI workers call
        ``__call__()`` concurrently on first request.
    """

    __slots__ = (
        "_context_config",
        "_freeze_lock",
        "_frozen",
        "_middleware",
        "_router",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
    )

    def __init__(self, config: ServerConfig | None = None, *, router: Router | None = None) -> None:
        self.config: ServerConfig = config or ServerConfig()
        self._context_config = self._build_context_config(self.config)
        self._router: Router = router or Router()
        self._middleware: tuple[Middleware, ...] = ()
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<Server routes={len(self._router.routes)} frozen={self._frozen}>"

    # -- Configuration --

    @staticmethod
    def _build_context_config(config: ServerConfig) -> ContextConfig:
        return ContextConfig(
            max_multipart_memory=config.max_multipart_memory,
            ip_resolver=config.ip_resolver(),
        )

    def configure(self, **changes: Any) -> Server:
        """Swap in a copy of the configuration with *changes* applied."""
        self._check_not_frozen()
        config = dataclasses.replace(self.config, **changes)
        self.config = config
        self._context_config = self._build_context_config(config)
        return self

    def set_max_multipart_memory(self, max_bytes: int) -> Server:
        """Bytes of each uploaded file kept in memory before spooling to disk."""
        return self.configure(max_multipart_memory=max_bytes)

    def set_remote_ip_headers(self, *headers: str) -> Server:
        """Headers consulted, in order, for the client address chain."""
        return self.configure(remote_ip_headers=tuple(headers))

    def set_trust_remote_ip_headers(self, trust: bool) -> Server:
        """Honour the remote-IP headers. Only enable behind a proxy you control."""
        return self.configure(trust_remote_ip_headers=trust)

    @property
    def context_config(self) -> ContextConfig:
        return self._context_config

    @property
    def router(self) -> Router:
        return self._router

    # -- Route registration --

    def use(self, *middleware: Middleware) -> Server:
        """Append server-wide middleware for routes registered from now on."""
        self._check_not_frozen()
        self._middleware = self._middleware + middleware
        return self

    def group(self, prefix: str, *middleware: Middleware) -> Group:
        """Routes under *prefix* wrapped in the current middleware plus *middleware*."""
        return Group(self, prefix, self._middleware + middleware)

    def _handle(
        self,
        methods: frozenset[str],
        path: str,
        handler: Handler,
        middleware: tuple[Middleware, ...],
        name: str | None = None,
    ) -> None:
        self._register(methods, path or "/", handler, self._middleware + middleware, name)

    def _register(
        self,
        methods: frozenset[str],
        path: str,
        handler: Handler,
        middleware: tuple[Middleware, ...],
        name: str | None,
    ) -> None:
        self._check_not_frozen()
        endpoint = compose(handler, middleware)
        self._router.add(
            Route(path=path, methods=methods, endpoint=endpoint, handler=handler, name=name)
        )

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup,
        before the server begins accepting HTTP requests.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator."""
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    # -- Serving --

    def listen_and_serve(self, host: str | None = None, port: int | None = None) -> None:
        """Serve on *host*:*port* with pounce until interrupted.

        Requires the ``server`` extra (``pip install sluice[server]``).
        """
        from pounce.config import ServerConfig as PounceConfig
        from pounce.server import Server as PounceServer

        self._ensure_frozen()
        config = PounceConfig(
            host=host or self.config.host,
            port=port or self.config.port,
            workers=self.config.worker_count,
            log_level=self.config.log_level,
        )
        PounceServer(config, self).run()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        self._ensure_frozen()

        await handle_request(
            scope,
            receive,
            send,
            router=self._router,
            config=self._context_config,
            debug=self.config.debug,
        )

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        """Run the ASGI lifespan protocol.

        Freezes the server at startup (before first HTTP request), then
        runs registered startup/shutdown hooks and signals completion
        back to the ASGI server.
        """
        self._ensure_frozen()

        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        await invoke(hook)
                except Exception as exc:
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif msg_type == "lifespan.shutdown":
                for hook in self._shutdown_hooks:
                    await invoke(hook)
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Internal --

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _ensure_frozen(self) -> None:
        """Thread-safe freeze with double-check locking."""
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._router.compile()
            self._frozen = True

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the server after it has started serving requests. "
                "Register routes, middleware, and settings before serving."
            )
            raise RuntimeError(msg)
