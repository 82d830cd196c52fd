"""Aggregated validation failure — a code, a message, and violations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Violation:
    """One field-level validation failure."""

    field: str
    code: str
    message: str

    def __json__(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}


@dataclass(eq=False)
class ValidationError(Exception):
    """Every violation collected while validating one value.

    Created on the first failed check and grown in place by later ones.
    Raise it or return it from ``validate()``; ``Context.bind_json``
    turns it into a 400 response carrying this body::

        {"code": "invalid_data", "message": "Invalid data",
         "errors": [{"field": ..., "code": ..., "message": ...}]}
    """

    errors: list[Violation] = field(default_factory=list)
    code: str = "invalid_data"
    message: str = "Invalid data"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        if not self.errors:
            return self.message
        fields = ", ".join(v.field for v in self.errors)
        return f"{self.message}: {fields}"

    def add(self, field_name: str, code: str, message: str) -> ValidationError:
        """Append one violation and return ``self``."""
        self.errors.append(Violation(field_name, code, message))
        return self

    def fields(self) -> dict[str, list[str]]:
        """Messages grouped by field, in check order."""
        grouped: dict[str, list[str]] = {}
        for violation in self.errors:
            grouped.setdefault(violation.field, []).append(violation.message)
        return grouped

    def __json__(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "errors": [v.__json__() for v in self.errors],
        }
