"""Invoke helpers — call sync or async handlers uniformly.

Sluice handlers can be ``def`` or ``async def``. Any code that calls
a user-provided handler or hook must handle both cases. This module
keeps the sync/async check in exactly one place.

Usage::

    from sluice._internal.invoke import invoke

    result = await invoke(handler, ctx)
"""

import inspect
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a handler and await the result if it's awaitable.

    Works with both sync and async callables::

        def health(ctx: Context) -> Response:
            return respond().text("ok")

        async def user(ctx: Context) -> Response:
            row = await fetch_user(ctx.path_value("id"))
            return respond().json(row)
    """
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
