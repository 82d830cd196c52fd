"""Middleware — Protocol-based, no inheritance required.

A middleware is any callable matching:
    async def mw(ctx: Context, next: Next) -> Response

Built-in middleware:
    LoggingMiddleware -- One access-log record per request, after commit
"""

from sluice.middleware.chain import compose
from sluice.middleware.logging import LoggingMiddleware
from sluice.middleware.protocol import Handler, Middleware, Next

__all__ = [
    "Handler",
    "LoggingMiddleware",
    "Middleware",
    "Next",
    "compose",
]
