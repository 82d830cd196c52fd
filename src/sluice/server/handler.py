"""ASGI handler — translates ASGI scope/messages to sluice types.

The only component that touches raw ASGI directly. Converts the scope to
a typed Request, routes it, runs the route's middleware chain with a
fresh Context, and commits the resulting Response exactly once through
an ``ASGISink``.
"""

import logging
import time

from sluice._internal.asgi import Receive, Scope, Send
from sluice.context import Context, ContextConfig
from sluice.errors import ClientDisconnect, HTTPError, InvariantError
from sluice.http.request import Request
from sluice.http.response import Response
from sluice.routing.router import Router
from sluice.server.errors import handle_http_error, handle_internal_error
from sluice.server.sender import ASGISink

logger = logging.getLogger("sluice.server")


async def dispatch(response: Response, sink: ASGISink) -> bool:
    """Commit *response* to *sink* once.

    A failed commit is logged, never retried, and reported as ``False``.
    ``InvariantError`` (a second commit, a negative argument) propagates.
    """
    try:
        await response.commit(sink)
    except InvariantError:
        raise
    except Exception:
        logger.exception("unable to write response")
        return False
    return True


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    router: Router,
    config: ContextConfig,
    debug: bool = False,
) -> None:
    """Process a single HTTP request through the full pipeline."""
    if scope["type"] != "http":
        return

    started = time.monotonic()
    request = Request.from_asgi(scope, receive)
    sink = ASGISink(send)
    ctx: Context | None = None

    try:
        try:
            match = router.match(request.method, request.path)
        except HTTPError as exc:
            response = handle_http_error(exc, request)
        else:
            ctx = Context(request.with_path_params(match.path_params), config)
            try:
                response = await match.route.endpoint(ctx)
            except InvariantError:
                # Broken wiring: end this one response and let the server see it
                await sink.finish()
                raise
            except ClientDisconnect:
                logger.debug("client disconnected: %s %s", request.method, request.path)
                return
            except Exception as exc:
                response = handle_internal_error(exc, ctx, started=started, debug=debug)

        try:
            await dispatch(response, sink)
        finally:
            await sink.finish()
    finally:
        # Spooled uploads are released once the response is out
        if ctx is not None:
            ctx.close()
