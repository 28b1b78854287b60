"""Email stub: an outbox for sent mail and a seeded inbox for reading.

Nothing leaves the machine; sending stores the message with status
``queued``.
"""

from typing import Any

from kenny.schemas.actions import ValidationResult
from kenny.services.base import DomainService


class EmailService(DomainService):
    kind = "email_outbox"
    inbox_kind = "email_inbox"

    def validate(self, slots, now=None) -> ValidationResult:
        if not slots.get("recipients"):
            names = slots.get("recipient_names")
            if names:
                return ValidationResult(valid=False, reason=f"What is {names[0]}'s email address?")
            return ValidationResult(valid=False, reason="Who should I send it to?")
        return ValidationResult(valid=True)

    def _build(self, fields: dict[str, Any]) -> dict[str, Any]:
        recipients = fields["recipients"]
        if isinstance(recipients, str):
            recipients = [recipients]
        return {
            "recipients": list(recipients),
            "subject": fields.get("subject") or "(no subject)",
            "body": fields.get("body") or "",
            "status": "queued",
        }

    def receive(self, message: dict[str, Any], *, user_id: str = "default") -> dict[str, Any]:
        """Drop a message into the inbox (used to seed the stub)."""
        return self._records.add(self.inbox_kind, user_id, {"read": False, **message})

    def search_inbox(self, filters: dict[str, Any], *, user_id: str = "default") -> list[dict[str, Any]]:
        """Inbox messages matching ``sender``/``sender_name``/``unread_only``/``limit``."""
        messages = self._records.list(self.inbox_kind, user_id, limit=200)
        sender = (filters.get("sender") or filters.get("sender_name") or "").lower()
        if sender:
            messages = [m for m in messages if sender in str(m.get("from", "")).lower()]
        if filters.get("unread_only"):
            messages = [m for m in messages if not m.get("read")]
        return messages[: int(filters.get("limit") or 5)]
