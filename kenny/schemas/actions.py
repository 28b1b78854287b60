"""Schemas for dispatched actions and domain-service results."""

from typing import Any

from pydantic import BaseModel


class ActionResult(BaseModel):
    """Outcome of dispatching an intent to a domain service."""

    success: bool
    message: str
    spoken_response: str
    data: dict[str, Any] | None = None
    follow_up: str | None = None


class ValidationResult(BaseModel):
    """Pre-dispatch check from a domain service."""

    valid: bool
    reason: str | None = None
