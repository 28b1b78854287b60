"""Calendar events."""

import logging
from datetime import datetime, timedelta
from typing import Any

from kenny.errors import DispatchFailure
from kenny.schemas.actions import ValidationResult
from kenny.services.base import DomainService, parse_slot_datetime

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MIN = 60


class CalendarService(DomainService):
    kind = "event"

    def validate(self, slots: dict[str, Any], now: datetime | None = None) -> ValidationResult:
        """Reject events without a usable start time or starting in the past."""
        if not slots.get("datetime"):
            return ValidationResult(valid=False, reason="When should I schedule it?")
        start = parse_slot_datetime(slots["datetime"])
        if start is None:
            return ValidationResult(valid=False, reason="I couldn't work out when that should be.")
        now = now or datetime.now(start.tzinfo)
        if start.tzinfo is None and now.tzinfo is not None:
            now = now.replace(tzinfo=None)
        if start < now:
            return ValidationResult(
                valid=False,
                reason="That time has already passed. When should I schedule it instead?",
            )
        return ValidationResult(valid=True)

    def _build(self, fields: dict[str, Any]) -> dict[str, Any]:
        start = parse_slot_datetime(fields.get("datetime"))
        if start is None:
            raise DispatchFailure("Event has no start time")
        duration = int(fields.get("duration_min") or DEFAULT_DURATION_MIN)
        end = parse_slot_datetime(fields.get("end_datetime")) or start + timedelta(minutes=duration)
        event = {
            "title": fields.get("title") or "Event",
            "datetime": start.isoformat(),
            "end_datetime": end.isoformat(),
            "duration_min": duration,
        }
        for optional in ("location", "attendees", "recurring"):
            if fields.get(optional):
                event[optional] = fields[optional]
        logger.info("Scheduling %r at %s", event["title"], event["datetime"])
        return event
