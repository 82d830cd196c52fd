"""Tests for sluice.http.dates — HTTP-date formatting and parsing."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from sluice.http.dates import format_http_date, parse_http_date, truncate_to_seconds


class TestFormat:
    def test_utc(self) -> None:
        when = datetime(2015, 10, 21, 7, 28, tzinfo=UTC)
        assert format_http_date(when) == "Wed, 21 Oct 2015 07:28:00 GMT"

    def test_other_zone_converted(self) -> None:
        when = datetime(2015, 10, 21, 9, 28, tzinfo=timezone(timedelta(hours=2)))
        assert format_http_date(when) == "Wed, 21 Oct 2015 07:28:00 GMT"

    def test_naive_taken_as_utc(self) -> None:
        assert format_http_date(datetime(2015, 10, 21, 7, 28)) == "Wed, 21 Oct 2015 07:28:00 GMT"


class TestParse:
    def test_imf_fixdate(self) -> None:
        assert parse_http_date("Wed, 21 Oct 2015 07:28:00 GMT") == datetime(
            2015, 10, 21, 7, 28, tzinfo=UTC
        )

    def test_rfc850(self) -> None:
        parsed = parse_http_date("Wednesday, 21-Oct-15 07:28:00 GMT")
        assert parsed == datetime(2015, 10, 21, 7, 28, tzinfo=UTC)

    def test_asctime(self) -> None:
        parsed = parse_http_date("Wed Oct 21 07:28:00 2015")
        assert parsed == datetime(2015, 10, 21, 7, 28, tzinfo=UTC)

    def test_asctime_space_padded_day(self) -> None:
        parsed = parse_http_date("Sun Nov  6 08:49:37 1994")
        assert parsed == datetime(1994, 11, 6, 8, 49, 37, tzinfo=UTC)

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_http_date("yesterday")

    @pytest.mark.parametrize(
        "value",
        [
            "15 Nov 94 08:12:31 +0200",
            "Wed, 21 Oct 2015 07:28:00 +0000",
            "Wed, 21 Oct 2015 07:28:00 UTC",
            "Wed, 21 Oct 2015 07:28 GMT",
        ],
    )
    def test_non_http_date_syntax_rejected(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_http_date(value)


def test_truncate_to_seconds() -> None:
    when = datetime(2015, 10, 21, 7, 28, 1, 999999, tzinfo=UTC)
    assert truncate_to_seconds(when) == datetime(2015, 10, 21, 7, 28, 1, tzinfo=UTC)
