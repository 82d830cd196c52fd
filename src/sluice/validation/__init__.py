"""Validation — chainable checks that aggregate into one error.

Usage::

    from sluice.validation import ValidationError, require_email, require_not_blank

    @dataclass
    class Signup:
        name: str = ""
        email: str = ""

        def validate(self) -> ValidationError | None:
            err = require_not_blank(self.name, "name")
            err = require_email(self.email, "email", err)
            return err

    async def signup(ctx: Context) -> Response:
        data = await ctx.bind_json(Signup)
        if isinstance(data, Response):
            return data
        ...
"""

from sluice.validation.result import ValidationError, Violation
from sluice.validation.rules import (
    require,
    require_email,
    require_match,
    require_max_length,
    require_min_length,
    require_not_blank,
    require_one_of,
    require_range,
    require_url,
)

__all__ = [
    "ValidationError",
    "Violation",
    "require",
    "require_email",
    "require_match",
    "require_max_length",
    "require_min_length",
    "require_not_blank",
    "require_one_of",
    "require_range",
    "require_url",
]
