"""Error responses for failures outside a handler's control.

Maps router ``HTTPError`` exceptions and unexpected exceptions escaping
the middleware chain to ``Response`` objects. Both are committed through
the same path as any handler response.
"""

import logging
import time

from sluice.context import Context
from sluice.errors import HTTPError, MethodNotAllowed, NotFound
from sluice.http.payloads import ErrorPayload
from sluice.http.request import Request
from sluice.http.response import Response, respond

logger = logging.getLogger("sluice.server")


def handle_http_error(exc: HTTPError, request: Request) -> Response:
    """Plain-text response for a routing failure (404 / 405)."""
    logger.debug("%d %s %s — %s", exc.status, request.method, request.path, exc.detail)

    if isinstance(exc, NotFound):
        body = "404 page not found"
    elif isinstance(exc, MethodNotAllowed):
        body = "405 method not allowed"
    else:
        body = exc.detail or f"Error {exc.status}"

    response = respond().status(exc.status).text(body).x_content_type_options()
    for name, value in exc.headers:
        response.header(name, value)
    return response


def handle_internal_error(
    exc: Exception, ctx: Context, *, started: float, debug: bool = False
) -> Response:
    """500 JSON response for an unexpected exception.

    Logged with the same fields as the access log, measured from
    *started* (a ``time.monotonic()`` reading). The exception text is
    only exposed in debug mode.
    """
    fields = {
        "ip": ctx.client_ip,
        "method": ctx.request.method,
        "path": ctx.request.path,
        "status": 500,
        "duration": int((time.monotonic() - started) * 1000),
    }
    logger.exception(
        "internal error ip=%s method=%s path=%s status=%d duration=%d",
        fields["ip"],
        fields["method"],
        fields["path"],
        fields["status"],
        fields["duration"],
        extra=fields,
    )

    message = "Internal Server Error"
    if debug:
        message = f"{type(exc).__name__}: {exc}"
    return respond().internal_server_error(
        ErrorPayload(code="InternalServerError", message=message)
    )
