"""Chainable validation checks.

Every check takes the error accumulated so far (or ``None``) and returns
it, grown by one violation when the check fails::

    def validate(self) -> ValidationError | None:
        err = require_not_blank(self.name, "name")
        err = require_max_length(self.name, 80, "name", err=err)
        err = require_email(self.email, "email", err=err)
        return err

No branching in the caller: a passing check hands back whatever it was
given, so ``None`` survives a run of passing checks untouched.
"""

import re
from collections.abc import Collection

from sluice.validation.result import ValidationError


def require(
    condition: bool,
    field: str,
    code: str,
    message: str,
    err: ValidationError | None = None,
) -> ValidationError | None:
    """Record a violation on *err* unless *condition* holds.

    Creates the ``ValidationError`` on the first failure.
    """
    if condition:
        return err
    if err is None:
        err = ValidationError()
    return err.add(field, code, message)


# ---------------------------------------------------------------------------
# Presence and length
# ---------------------------------------------------------------------------


def require_not_blank(
    value: str | None, field: str, err: ValidationError | None = None
) -> ValidationError | None:
    """Value must be present and contain something besides whitespace."""
    return require(
        bool(value and value.strip()), field, "required", "This field is required", err
    )


def require_min_length(
    value: str, n: int, field: str, err: ValidationError | None = None
) -> ValidationError | None:
    """String must be at least *n* characters."""
    return require(len(value) >= n, field, "min_length", f"Must be at least {n} characters", err)


def require_max_length(
    value: str, n: int, field: str, err: ValidationError | None = None
) -> ValidationError | None:
    """String must be at most *n* characters."""
    return require(len(value) <= n, field, "max_length", f"Must be at most {n} characters", err)


# ---------------------------------------------------------------------------
# Format
# ---------------------------------------------------------------------------

# Basic email pattern — checks structure, not deliverability
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

# Basic URL pattern — checks scheme + host structure
_URL_RE = re.compile(r"^https?://[^\s/$.?#].\S*$", re.IGNORECASE)


def require_email(
    value: str, field: str, err: ValidationError | None = None
) -> ValidationError | None:
    """Value must be a valid email address (basic format check)."""
    return require(
        _EMAIL_RE.match(value) is not None,
        field,
        "email",
        "Must be a valid email address",
        err,
    )


def require_url(value: str, field: str, err: ValidationError | None = None) -> ValidationError | None:
    """Value must be an http or https URL."""
    return require(_URL_RE.match(value) is not None, field, "url", "Must be a valid URL", err)


def require_match(
    value: str,
    pattern: str | re.Pattern[str],
    field: str,
    err: ValidationError | None = None,
    *,
    message: str | None = None,
) -> ValidationError | None:
    """Value must match *pattern* (anchored at the start)."""
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
    return require(
        compiled.match(value) is not None,
        field,
        "pattern",
        message or f"Must match pattern: {compiled.pattern}",
        err,
    )


# ---------------------------------------------------------------------------
# Choice and range
# ---------------------------------------------------------------------------


def require_one_of(
    value: str, choices: Collection[str], field: str, err: ValidationError | None = None
) -> ValidationError | None:
    """Value must be one of *choices*."""
    options = ", ".join(sorted(choices))
    return require(value in choices, field, "one_of", f"Must be one of: {options}", err)


def require_range(
    value: float,
    low: float,
    high: float,
    field: str,
    err: ValidationError | None = None,
) -> ValidationError | None:
    """Number must lie within ``[low, high]``."""
    return require(
        low <= value <= high,
        field,
        "range",
        f"Must be between {low} and {high}",
        err,
    )
