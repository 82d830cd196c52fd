"""Tests for sluice.validation — chainable checks and ValidationError."""

import json
import re

import pytest

from sluice.http.response import encode_json
from sluice.validation import (
    ValidationError,
    Violation,
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


class TestRequire:
    def test_passing_check_returns_input(self) -> None:
        assert require(True, "name", "required", "missing") is None
        err = ValidationError()
        assert require(True, "name", "required", "missing", err) is err

    def test_failing_check_creates_error(self) -> None:
        err = require(False, "name", "required", "missing")
        assert err is not None
        assert err.errors == [Violation("name", "required", "missing")]

    def test_failing_check_grows_existing_error(self) -> None:
        first = require(False, "a", "required", "missing")
        second = require(False, "b", "required", "missing", first)
        assert second is first
        assert [v.field for v in second.errors] == ["a", "b"]

    def test_only_failures_recorded_in_order(self) -> None:
        err = require_not_blank("", "name")
        err = require_min_length("abcdef", 3, "name", err=err)
        err = require_email("nope", "email", err=err)
        err = require_range(5, 1, 10, "age", err=err)
        err = require_one_of("purple", {"red", "blue"}, "color", err=err)
        assert err is not None
        assert [(v.field, v.code) for v in err.errors] == [
            ("name", "required"),
            ("email", "email"),
            ("color", "one_of"),
        ]

    def test_all_passing_stays_none(self) -> None:
        err = require_not_blank("Ada", "name")
        err = require_max_length("Ada", 10, "name", err=err)
        err = require_url("https://example.com", "site", err=err)
        assert err is None


class TestRules:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_not_blank(self, value: str | None) -> None:
        err = require_not_blank(value, "name")
        assert err is not None
        assert err.errors[0].message == "This field is required"

    def test_lengths(self) -> None:
        assert require_min_length("ab", 3, "pw") is not None
        assert require_max_length("abcd", 3, "pw") is not None
        assert require_max_length("abc", 3, "pw") is None

    def test_email(self) -> None:
        assert require_email("ada@example.com", "email") is None
        assert require_email("ada@", "email") is not None

    def test_url(self) -> None:
        assert require_url("http://example.com/x", "site") is None
        assert require_url("ftp://example.com", "site") is not None

    def test_match(self) -> None:
        assert require_match("abc-123", r"[a-z]+-\d+", "slug") is None
        err = require_match("ABC", re.compile(r"[a-z]+"), "slug", message="lowercase only")
        assert err is not None
        assert err.errors[0].code == "pattern"
        assert err.errors[0].message == "lowercase only"

    def test_range(self) -> None:
        assert require_range(0, 0, 1, "ratio") is None
        err = require_range(2, 0, 1, "ratio")
        assert err is not None
        assert err.errors[0].message == "Must be between 0 and 1"


class TestValidationError:
    def test_is_an_exception(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            raise ValidationError().add("name", "required", "This field is required")
        assert str(exc_info.value) == "Invalid data: name"

    def test_empty_error_is_truthy(self) -> None:
        assert ValidationError()

    def test_fields(self) -> None:
        err = ValidationError().add("pw", "min_length", "too short").add("pw", "pattern", "weak")
        err.add("name", "required", "missing")
        assert err.fields() == {"pw": ["too short", "weak"], "name": ["missing"]}

    def test_json_shape(self) -> None:
        err = ValidationError().add("email", "email", "Must be a valid email address")
        assert json.loads(encode_json(err)) == {
            "code": "invalid_data",
            "message": "Invalid data",
            "errors": [
                {"field": "email", "code": "email", "message": "Must be a valid email address"}
            ],
        }
