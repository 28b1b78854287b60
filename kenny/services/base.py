"""Common shape of the domain services the dispatcher talks to."""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from kenny.errors import DispatchFailure
from kenny.schemas.actions import ValidationResult
from kenny.services.records import RecordStore


def parse_slot_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 slot value; None when absent or unparseable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class DomainService(ABC):
    """A collaborator that turns slots into a stored item.

    ``create`` returns the stored item: ``id`` plus the fields it kept.
    """

    kind: str

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    def validate(self, slots: dict[str, Any], now: datetime | None = None) -> ValidationResult:
        return ValidationResult(valid=True)

    def create(self, fields: dict[str, Any], *, user_id: str = "default") -> dict[str, Any]:
        """Store an item built from *fields*.

        Raises:
            DispatchFailure: If the fields cannot be turned into an item.
        """
        payload = self._build(fields)
        try:
            return self._records.add(self.kind, user_id, payload)
        except sqlite3.Error as exc:
            raise DispatchFailure(f"Could not store {self.kind}: {exc}") from exc

    def list(self, *, user_id: str = "default", limit: int = 50) -> list[dict[str, Any]]:
        return self._records.list(self.kind, user_id, limit)

    @abstractmethod
    def _build(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Turn slots into the stored payload."""
