"""Action dispatcher — routes a resolved intent to its domain service.

Receives an (intent, slots) pair that the confidence gate has already
cleared, validates it with the target service, executes it and renders a
display message plus a speakable response. No LLM calls.

Never raises for expected failures: validation problems come back as a
clarifying ``success=False`` result and service errors as an apology.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from kenny.errors import ValidationFailure
from kenny.schemas.actions import ActionResult
from kenny.schemas.intent import Intent
from kenny.services.base import DomainService, parse_slot_datetime
from kenny.services.events import CalendarService
from kenny.services.mail import EmailService
from kenny.services.notes import NoteService
from kenny.services.reminders import ReminderService

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, something went wrong while doing that. Please try again."

UNKNOWN_INTENT_MESSAGE = "I'm not sure what you'd like me to do. Could you rephrase that?"
UNKNOWN_INTENT_FOLLOW_UP = (
    "You can ask me to schedule an event, set a reminder, take a note, or send or check email."
)


# ------------------------------------------------------------------
# Rendering helpers
# ------------------------------------------------------------------


def format_clock(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    if dt.minute:
        return f"{hour}:{dt.minute:02d} {suffix}"
    return f"{hour} {suffix}"


def format_when(dt: datetime, now: datetime) -> str:
    """Speakable date/time relative to *now*: "today at 3 PM", "on Friday at 9:30 AM"."""
    days = (dt.date() - now.date()).days
    if days == 0:
        day = "today"
    elif days == 1:
        day = "tomorrow"
    elif 1 < days < 7:
        day = f"on {dt.strftime('%A')}"
    else:
        day = f"on {dt.strftime('%B')} {dt.day}"
    return f"{day} at {format_clock(dt)}"


def format_duration(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if mins:
        parts.append(f"{mins} minute{'s' if mins != 1 else ''}")
    return " and ".join(parts) or "0 minutes"


# ------------------------------------------------------------------
# Dispatcher
# ------------------------------------------------------------------


class ActionDispatcher:
    """Routes intents to domain services.

    Usage::

        dispatcher = ActionDispatcher(
            calendar=CalendarService(records),
            reminders=ReminderService(records),
            notes=NoteService(records),
            email=EmailService(records),
        )
        result = await dispatcher.dispatch("create_event", slots, session_id)
    """

    def __init__(
        self,
        *,
        calendar: CalendarService,
        reminders: ReminderService,
        notes: NoteService,
        email: EmailService,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._calendar = calendar
        self._reminders = reminders
        self._notes = notes
        self._email = email
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._routes: dict[str, Callable[[dict[str, Any], str, datetime], ActionResult]] = {
            Intent.CREATE_EVENT: self._create_event,
            Intent.ADD_REMINDER: self._add_reminder,
            Intent.CREATE_NOTE: self._create_note,
            Intent.SEND_EMAIL: self._send_email,
            Intent.READ_EMAIL: self._read_email,
        }

    async def dispatch(
        self,
        intent: str,
        slots: dict[str, Any],
        session_id: str,
        *,
        user_id: str = "default",
    ) -> ActionResult:
        """Execute *intent* with *slots* and render the outcome.

        Returns:
            ActionResult. ``success`` is False for unknown intents, failed
            validation (with a clarifying message), and service errors
            (with a generic apology).
        """
        handler = self._routes.get(intent)
        if handler is None:
            logger.info("No handler for intent %r (session %s)", intent, session_id[:8])
            return ActionResult(
                success=False,
                message=UNKNOWN_INTENT_MESSAGE,
                spoken_response=UNKNOWN_INTENT_MESSAGE,
                follow_up=UNKNOWN_INTENT_FOLLOW_UP,
            )

        try:
            result = handler(slots, user_id, self._clock())
        except ValidationFailure as exc:
            logger.info("Validation failed for %s: %s", intent, exc.reason)
            return ActionResult(
                success=False,
                message=exc.reason,
                spoken_response=exc.reason,
                follow_up=exc.reason,
            )
        except Exception:
            logger.exception("Dispatch of %s failed (session %s)", intent, session_id[:8])
            return ActionResult(success=False, message=APOLOGY, spoken_response=APOLOGY)

        logger.info("Dispatched %s: %s", intent, result.message)
        return result

    def _validated(self, service: DomainService, slots: dict[str, Any], now: datetime) -> None:
        validation = service.validate(slots, now)
        if not validation.valid:
            raise ValidationFailure(validation.reason or "I need a bit more detail to do that.")

    def _create_event(self, slots: dict[str, Any], user_id: str, now: datetime) -> ActionResult:
        self._validated(self._calendar, slots, now)
        event = self._calendar.create(slots, user_id=user_id)

        start = parse_slot_datetime(event["datetime"])
        when = format_when(start, now)
        length = format_duration(event["duration_min"])
        message = f"Scheduled \"{event['title']}\" {when} for {length}."
        spoken = f"Okay, {event['title']} is on your calendar {when}."
        if event.get("recurring"):
            message += f" Repeats {event['recurring'].replace(':', ' on ')}."
        follow_up = None if event.get("location") else "Want me to add a location?"
        return ActionResult(
            success=True, message=message, spoken_response=spoken, data=event, follow_up=follow_up
        )

    def _add_reminder(self, slots: dict[str, Any], user_id: str, now: datetime) -> ActionResult:
        self._validated(self._reminders, slots, now)
        reminder = self._reminders.create(slots, user_id=user_id)

        when = format_when(parse_slot_datetime(reminder["datetime"]), now)
        message = f"Reminder set: \"{reminder['title']}\" {when}."
        spoken = f"I'll remind you to {reminder['title']} {when}."
        return ActionResult(success=True, message=message, spoken_response=spoken, data=reminder)

    def _create_note(self, slots: dict[str, Any], user_id: str, now: datetime) -> ActionResult:
        self._validated(self._notes, slots, now)
        note = self._notes.create(slots, user_id=user_id)

        message = f"Saved note \"{note['title']}\"."
        if note["tags"]:
            message += f" Tags: {', '.join('#' + t for t in note['tags'])}."
        return ActionResult(success=True, message=message, spoken_response="Got it, I saved that note.", data=note)

    def _send_email(self, slots: dict[str, Any], user_id: str, now: datetime) -> ActionResult:
        self._validated(self._email, slots, now)
        sent = self._email.create(slots, user_id=user_id)

        to = ", ".join(sent["recipients"])
        message = f"Email to {to} queued: \"{sent['subject']}\"."
        spoken = f"Okay, I've queued your email to {to}."
        follow_up = "What should the email say?" if not sent["body"] else None
        return ActionResult(
            success=True, message=message, spoken_response=spoken, data=sent, follow_up=follow_up
        )

    def _read_email(self, slots: dict[str, Any], user_id: str, now: datetime) -> ActionResult:
        messages = self._email.search_inbox(slots, user_id=user_id)
        if not messages:
            text = "You have no matching emails."
            return ActionResult(success=True, message=text, spoken_response=text, data={"messages": []})

        lines = [f"From {m.get('from', 'unknown')}: {m.get('subject', '(no subject)')}" for m in messages]
        latest = messages[0]
        count = len(messages)
        spoken = (
            f"You have {count} email{'s' if count != 1 else ''}. "
            f"The latest is from {latest.get('from', 'someone')} about {latest.get('subject', 'nothing in particular')}."
        )
        return ActionResult(
            success=True, message="\n".join(lines), spoken_response=spoken, data={"messages": messages}
        )
