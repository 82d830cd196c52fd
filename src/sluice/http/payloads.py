"""Wire-visible error payload."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """An error body with a code and message.

    Serializes as ``{"code": ..., "message": ...}``, omitting empty fields.
    """

    code: str = ""
    message: str = ""

    def __json__(self) -> dict[str, str]:
        body: dict[str, str] = {}
        if self.code:
            body["code"] = self.code
        if self.message:
            body["message"] = self.message
        return body
