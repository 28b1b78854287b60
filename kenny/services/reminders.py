"""Reminders."""

from datetime import datetime
from typing import Any

from kenny.schemas.actions import ValidationResult
from kenny.services.base import DomainService, parse_slot_datetime


class ReminderService(DomainService):
    kind = "reminder"

    def validate(self, slots: dict[str, Any], now: datetime | None = None) -> ValidationResult:
        if not slots.get("datetime"):
            return ValidationResult(valid=False, reason="When should I remind you?")
        due = parse_slot_datetime(slots["datetime"])
        if due is None:
            return ValidationResult(valid=False, reason="I couldn't work out when to remind you.")
        now = now or datetime.now(due.tzinfo)
        if due.tzinfo is None and now.tzinfo is not None:
            now = now.replace(tzinfo=None)
        if due < now:
            return ValidationResult(valid=False, reason="That time has already passed. When should I remind you?")
        return ValidationResult(valid=True)

    def _build(self, fields: dict[str, Any]) -> dict[str, Any]:
        reminder = {
            "title": fields.get("title") or "Reminder",
            "datetime": fields["datetime"],
        }
        if fields.get("recurring"):
            reminder["recurring"] = fields["recurring"]
        return reminder
