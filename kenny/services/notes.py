"""Notes."""

from typing import Any

from kenny.schemas.actions import ValidationResult
from kenny.services.base import DomainService


class NoteService(DomainService):
    kind = "note"

    def validate(self, slots, now=None) -> ValidationResult:
        if not (slots.get("body") or slots.get("title")):
            return ValidationResult(valid=False, reason="What would you like the note to say?")
        return ValidationResult(valid=True)

    def _build(self, fields: dict[str, Any]) -> dict[str, Any]:
        body = fields.get("body") or fields.get("title")
        return {
            "title": fields.get("title") or body[:60],
            "body": body,
            "tags": list(fields.get("tags") or []),
        }
