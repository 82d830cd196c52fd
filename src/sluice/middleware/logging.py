"""Request logging middleware.

Logs one INFO record per request on the ``sluice.request`` logger once
the response has been written::

    request ip=10.0.0.7 method=GET path=/users/42 status=200 duration=3

The fields are also attached to the record (``record.ip``,
``record.method``, ...) for structured handlers.
"""

import logging
import time
from dataclasses import dataclass

from sluice.context import Context
from sluice.http.response import Response
from sluice.middleware.protocol import Next

logger = logging.getLogger("sluice.request")


@dataclass(frozen=True, slots=True)
class LoggingMiddleware:
    """Access log written from an after-commit hook.

    The duration covers the chain and the write, in whole milliseconds.
    """

    logger: logging.Logger = logger
    level: int = logging.INFO

    async def __call__(self, ctx: Context, next: Next) -> Response:
        start = time.monotonic()
        response = await next(ctx)

        def log_request() -> None:
            fields = {
                "ip": ctx.client_ip,
                "method": ctx.request.method,
                "path": ctx.request.path,
                "status": response.status_code,
                "duration": int((time.monotonic() - start) * 1000),
            }
            self.logger.log(
                self.level,
                "request ip=%s method=%s path=%s status=%d duration=%d",
                fields["ip"],
                fields["method"],
                fields["path"],
                fields["status"],
                fields["duration"],
                extra=fields,
            )

        return response.after_commit(log_request)
