"""HTTP-date formatting and parsing (RFC 9110 section 5.6.7)."""

from datetime import UTC, datetime
from email.utils import format_datetime

# IMF-fixdate, then the two obsolete forms recipients must still accept
HTTP_DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S GMT",
    "%A, %d-%b-%y %H:%M:%S GMT",
    "%a %b %d %H:%M:%S %Y",
)


def format_http_date(value: datetime) -> str:
    """Render *value* as an IMF-fixdate in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return format_datetime(value.astimezone(UTC), usegmt=True)


def parse_http_date(value: str) -> datetime:
    """Parse an IMF-fixdate, RFC 850 or asctime date into an aware UTC datetime.

    Any other date syntax, RFC 2822 numeric zones included, raises
    ``ValueError``.
    """
    for fmt in HTTP_DATE_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=UTC)
    msg = f"invalid HTTP date: {value!r}"
    raise ValueError(msg)


def truncate_to_seconds(value: datetime) -> datetime:
    """Drop sub-second precision (HTTP dates carry whole seconds)."""
    return value.replace(microsecond=0)
