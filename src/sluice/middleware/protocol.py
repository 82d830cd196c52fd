"""Middleware protocol and the Handler / Next type aliases.

A middleware is any callable matching::

    async def my_mw(ctx: Context, next: Next) -> Response: ...

No base class required. The framework checks the shape, not the lineage.

A middleware may act on the context before calling ``next``, skip
``next`` entirely and answer itself (auth rejection, cache hit), or
decorate the ``Response`` that ``next`` returns: change its status, add
headers, register ``after_commit`` hooks.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from sluice.context import Context
from sluice.http.response import Response

# A terminal route handler; plain functions and coroutines both work
type Handler = Callable[[Context], Response | Awaitable[Response]]

# The rest of the chain, as seen from inside a middleware
type Next = Callable[[Context], Awaitable[Response]]


class Middleware(Protocol):
    """Protocol for sluice middleware.

    Accepts both functions and callable objects::

        # Function middleware
        async def require_token(ctx: Context, next: Next) -> Response:
            if not ctx.authorization:
                return respond().unauthorized()
            return await next(ctx)

        # Class middleware
        class RateLimiter:
            async def __call__(self, ctx: Context, next: Next) -> Response:
                ...
    """

    async def __call__(self, ctx: Context, next: Next) -> Response: ...
