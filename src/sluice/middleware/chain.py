"""Middleware composition.

``compose(handler, [m0, m1, ..., mk])`` builds the callable

    m0(ctx, m1(ctx, ... mk(ctx, handler) ...))

once, when the route is registered. Dispatching a request then only
allocates its ``Context``; no closures are built per request.
"""

from collections.abc import Sequence

from sluice._internal.invoke import invoke
from sluice.context import Context
from sluice.errors import InvariantError
from sluice.http.response import Response
from sluice.middleware.protocol import Handler, Middleware, Next


def _terminal(handler: Handler) -> Next:
    async def call_handler(ctx: Context) -> Response:
        response = await invoke(handler, ctx)
        if response is None:
            msg = "received no response from handler"
            raise InvariantError(msg)
        return response

    return call_handler


def _link(mw: Middleware, inner: Next) -> Next:
    async def call_middleware(ctx: Context) -> Response:
        response = await mw(ctx, inner)
        if response is None:
            msg = f"received no response from middleware {mw!r}"
            raise InvariantError(msg)
        return response

    return call_middleware


def compose(handler: Handler, middleware: Sequence[Middleware] = ()) -> Next:
    """Wrap *handler* in *middleware*, outermost first.

    A handler or middleware that returns ``None`` raises
    ``InvariantError`` when the request reaches it.
    """
    chain = _terminal(handler)
    for mw in reversed(middleware):
        chain = _link(mw, chain)
    return chain
