"""Slot extraction as an ordered list of pure rules, with a model fallback.

Each rule is ``(text, intent, now) -> partial slots``. Rules run in three
tiers and a key filled by an earlier rule is never overwritten:

1. DETERMINISTIC_RULES — date/time, range, duration, recurrence.
2. HEURISTIC_RULES — intent-specific regexes and keyword defaults.
3. The model, only when fewer than ``min_slots`` keys were filled.
"""

import json
import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from kenny.errors import ExtractionFailure
from kenny.integrations.ollama import CompletionError, OllamaClient
from kenny.planner.temporal import (
    WEEKDAYS,
    parse_datetime,
    parse_duration,
    parse_range,
    parse_recurrence,
)
from kenny.schemas.intent import Intent

logger = logging.getLogger(__name__)

MIN_SLOTS = 2

SlotRule = Callable[[str, str, datetime], dict[str, Any]]

# Default event lengths in minutes, checked in order
DEFAULT_DURATIONS: list[tuple[str, int]] = [
    (r"\bstand-?ups?\b", 15),
    (r"\b(1:1|1-on-1|one[- ]on[- ]one)\b", 30),
    (r"\bcoffee\b", 30),
    (r"\binterview\b", 45),
    (r"\btraining\b", 90),
    (r"\bworkshop\b", 120),
    (r"\bconference\b", 480),
    (r"\ball[- ]hands\b", 60),
    (r"\blunch\b", 60),
    (r"\bmeeting\b", 60),
]

_EMAIL = r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+"

_EVENT_PREFIX = (
    r"^\s*(?:please\s+)?(?:can you\s+|could you\s+)?"
    r"(?:schedule|set up|setup|book|add|create|put|plan|arrange)\s+"
    r"(?:a\s+|an\s+|the\s+|my\s+)?(?:new\s+)?"
)

_NOTE_TRIGGER = (
    r"\b(?:take a note(?: that)?|make a note(?: that)?|note that|note to self|note"
    r"|write down|jot down|capture|memo)\b\s*[:,-]?\s*"
)

_REMINDER_TRIGGER = r"^\s*(?:please\s+)?(?:remind me|set a reminder|reminder|ping me|nudge me|alert me)\s*(?:to|about|that|of)?\s*"

_NON_NAMES = {w.capitalize() for w in WEEKDAYS} | {
    "Today", "Tomorrow", "Tonight", "January", "February", "March", "April",
    "May", "June", "July", "August", "September", "October", "November", "December",
    "I", "The", "A", "An",
}


# ------------------------------------------------------------------
# Shared text helpers
# ------------------------------------------------------------------


def _remove(text: str, fragment: str) -> str:
    return re.sub(re.escape(fragment), " ", text, count=1, flags=re.IGNORECASE)


def _strip_temporal(text: str, now: datetime) -> str:
    """Remove date/time, range, duration and recurrence phrases from *text*."""
    cleaned = text
    time_range = parse_range(cleaned, now)
    if time_range is not None:
        cleaned = _remove(cleaned, time_range.span)
    match = parse_datetime(cleaned, now)
    while match is not None:
        before = cleaned
        for span in match.spans:
            cleaned = _remove(cleaned, span)
        if cleaned == before:
            break
        match = parse_datetime(cleaned, now)
    cleaned = re.sub(
        r"\bfor\s+(?:an?|half an|\d+(?:\.\d+)?)\s*(?:hours?|hrs?|minutes?|mins?|hour and a half)\b",
        " ", cleaned, flags=re.IGNORECASE,
    )
    cleaned = re.sub(
        r"\b(?:every\s+\w+|daily|weekly|monthly|on weekdays|on weekends)\b",
        " ", cleaned, flags=re.IGNORECASE,
    )
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,.;:-!?")
    # Dangling prepositions left behind by removed phrases
    cleaned = re.sub(r"(?:\s+\b(?:at|on|for|from|by|in|this|next)\b)+$", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip(" ,.;:-!?")


def _first_sentence(text: str, max_length: int = 60) -> str:
    sentence = re.split(r"(?<=[.!?])\s+|\n", text.strip(), maxsplit=1)[0].strip()
    if len(sentence) > max_length:
        cut = sentence[:max_length]
        sentence = cut[: cut.rfind(" ")] if " " in cut else cut
    return sentence.rstrip(".!?")


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


# ------------------------------------------------------------------
# Tier 1: deterministic
# ------------------------------------------------------------------


def extract_range(text: str, intent: str, now: datetime) -> dict[str, Any]:
    time_range = parse_range(text, now)
    if time_range is None:
        return {}
    return {
        "datetime": time_range.start.isoformat(),
        "end_datetime": time_range.end.isoformat(),
        "duration_min": time_range.duration_min,
    }


def extract_datetime(text: str, intent: str, now: datetime) -> dict[str, Any]:
    match = parse_datetime(text, now)
    if match is None:
        return {}
    return {"datetime": match.value.isoformat()}


def extract_duration(text: str, intent: str, now: datetime) -> dict[str, Any]:
    minutes = parse_duration(text)
    return {"duration_min": minutes} if minutes else {}


def extract_recurrence(text: str, intent: str, now: datetime) -> dict[str, Any]:
    rule = parse_recurrence(text)
    return {"recurring": rule} if rule else {}


DETERMINISTIC_RULES: list[SlotRule] = [
    extract_range,
    extract_datetime,
    extract_duration,
    extract_recurrence,
]


# ------------------------------------------------------------------
# Tier 2: intent heuristics and keyword defaults
# ------------------------------------------------------------------


def extract_quoted_title(text: str, intent: str, now: datetime) -> dict[str, Any]:
    m = re.search(r"[\"“]([^\"”]+)[\"”]", text)
    return {"title": m.group(1).strip()} if m else {}


def extract_email_addresses(text: str, intent: str, now: datetime) -> dict[str, Any]:
    addresses = re.findall(_EMAIL, text)
    if not addresses:
        return {}
    if intent == Intent.SEND_EMAIL:
        return {"recipients": addresses}
    if intent == Intent.READ_EMAIL:
        return {"sender": addresses[0]}
    return {}


def extract_email_parts(text: str, intent: str, now: datetime) -> dict[str, Any]:
    if intent == Intent.SEND_EMAIL:
        slots: dict[str, Any] = {}
        m = re.search(r"\b(?:about|regarding|re:|subject:?)\s+(.+?)(?:\s+(?:saying|that says|and say)\b|$)", text, re.IGNORECASE)
        if m:
            slots["subject"] = m.group(1).strip(" .,")
        m = re.search(r"\b(?:saying|that says|and say|telling (?:him|her|them))\s+(.+)$", text, re.IGNORECASE)
        if m:
            slots["body"] = m.group(1).strip()
        if not re.search(_EMAIL, text):
            m = re.search(r"\b(?:email|mail|write to|send (?:an email|a message|a note) to)\s+([A-Z][a-z]+)\b", text)
            if m and m.group(1) not in _NON_NAMES:
                slots["recipient_names"] = [m.group(1)]
        return slots

    if intent == Intent.READ_EMAIL:
        slots = {}
        if re.search(r"\bunread\b", text, re.IGNORECASE):
            slots["unread_only"] = True
        m = re.search(r"\b(?:last|latest|recent)\s+(\d+)\b", text, re.IGNORECASE)
        if m:
            slots["limit"] = int(m.group(1))
        m = re.search(r"\bfrom\s+([A-Z][a-z]+)\b", text)
        if m and m.group(1) not in _NON_NAMES:
            slots["sender_name"] = m.group(1)
        return slots
    return {}


def extract_hashtags(text: str, intent: str, now: datetime) -> dict[str, Any]:
    if intent != Intent.CREATE_NOTE:
        return {}
    tags = [t.lower() for t in re.findall(r"#(\w+)", text)]
    return {"tags": tags} if tags else {}


def extract_reminder_text(text: str, intent: str, now: datetime) -> dict[str, Any]:
    if intent != Intent.ADD_REMINDER:
        return {}
    body = re.sub(_REMINDER_TRIGGER, "", text, count=1, flags=re.IGNORECASE)
    body = _strip_temporal(body, now)
    return {"title": body} if body else {}


def extract_note_content(text: str, intent: str, now: datetime) -> dict[str, Any]:
    if intent != Intent.CREATE_NOTE:
        return {}
    m = re.search(_NOTE_TRIGGER, text, re.IGNORECASE)
    body = text[m.end():] if m else text
    body = re.sub(r"\s*#\w+", "", body).strip()
    if not body:
        return {}
    return {"body": body, "title": _capitalize(_first_sentence(body))}


def extract_event_details(text: str, intent: str, now: datetime) -> dict[str, Any]:
    if intent != Intent.CREATE_EVENT:
        return {}
    slots: dict[str, Any] = {}

    m = re.search(r"\bwith\s+((?:[A-Z][a-z]+)(?:(?:\s*,\s*|\s+and\s+)[A-Z][a-z]+)*)", text)
    if m:
        names = [n for n in re.split(r"\s*,\s*|\s+and\s+", m.group(1)) if n not in _NON_NAMES]
        if names:
            slots["attendees"] = names

    m = re.search(r"\b(?:at|in)\s+(?:the\s+)?((?:[A-Z][\w']*)(?:\s+[A-Z][\w']*)*)", text)
    if m and m.group(1).split()[0] not in _NON_NAMES:
        slots["location"] = m.group(1)

    title = re.sub(_EVENT_PREFIX, "", text, count=1, flags=re.IGNORECASE)
    if "location" in slots:
        title = re.sub(rf"\s+(?:at|in)\s+(?:the\s+)?{re.escape(slots['location'])}", "", title)
    title = _strip_temporal(title, now)
    title = re.sub(r"^(?:to|for)\s+", "", title, flags=re.IGNORECASE)
    if title:
        slots["title"] = _capitalize(title)
    return slots


def extract_default_duration(text: str, intent: str, now: datetime) -> dict[str, Any]:
    if intent != Intent.CREATE_EVENT:
        return {}
    lowered = text.lower()
    for pattern, minutes in DEFAULT_DURATIONS:
        if re.search(pattern, lowered):
            return {"duration_min": minutes}
    return {}


HEURISTIC_RULES: list[SlotRule] = [
    extract_quoted_title,
    extract_email_addresses,
    extract_email_parts,
    extract_hashtags,
    extract_reminder_text,
    extract_note_content,
    extract_event_details,
    extract_default_duration,
]


def apply_rules(
    rules: list[SlotRule],
    text: str,
    intent: str,
    now: datetime,
    slots: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run *rules* in order, keeping the first value produced for each key."""
    merged = dict(slots or {})
    for rule in rules:
        for key, value in rule(text, intent, now).items():
            merged.setdefault(key, value)
    return merged


# ------------------------------------------------------------------
# Tier 3: model
# ------------------------------------------------------------------

SLOT_FIELDS: dict[str, str] = {
    Intent.CREATE_EVENT: "title, datetime (ISO-8601), duration_min, location, attendees (list)",
    Intent.ADD_REMINDER: "title, datetime (ISO-8601)",
    Intent.CREATE_NOTE: "title, body, tags (list)",
    Intent.SEND_EMAIL: "recipients (list of email addresses), subject, body",
    Intent.READ_EMAIL: "sender, unread_only (bool), limit (int)",
}

SLOT_SYSTEM_PROMPT = """\
You extract structured fields from a personal assistant request. \
Respond with a single JSON object containing only the fields you can \
find in the request. Omit anything that is not stated.
"""

SLOT_USER_PROMPT = """\
Intent: {intent}
Fields: {fields}
Current time: {now}
Request: {text}
"""


def parse_model_slots(content: str) -> dict[str, Any]:
    """Parse model output into slots.

    Raises:
        ExtractionFailure: If *content* is not a JSON object.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ExtractionFailure(f"Model returned malformed JSON: {content[:80]!r}") from exc
    if not isinstance(parsed, dict):
        raise ExtractionFailure(f"Model returned {type(parsed).__name__}, expected an object")
    return {k: v for k, v in parsed.items() if v not in (None, "", [])}


class SlotExtractor:
    """Fills slots for a classified utterance.

    Usage::

        extractor = SlotExtractor(ollama=client)
        slots = await extractor.extract_slots("lunch with Sam friday at noon", "create_event")
    """

    def __init__(
        self,
        *,
        ollama: OllamaClient | None,
        min_slots: int = MIN_SLOTS,
        model: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ollama = ollama
        self._min_slots = min_slots
        self._model = model
        self._clock = clock or (lambda: datetime.now().astimezone())

    async def extract_slots(
        self,
        text: str,
        intent: str,
        *,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Extract slots for *intent* from *text*.

        Deterministic values are authoritative: the model tier only adds keys
        that are still missing. Malformed model output counts as no slots.
        """
        now = now or self._clock()
        slots = apply_rules(DETERMINISTIC_RULES, text, intent, now)
        slots = apply_rules(HEURISTIC_RULES, text, intent, now, slots)

        if len(slots) >= self._min_slots or self._ollama is None or intent not in SLOT_FIELDS:
            return slots

        model_slots = await self._extract_with_model(text, intent, now)
        for key, value in model_slots.items():
            slots.setdefault(key, value)
        return slots

    async def _extract_with_model(self, text: str, intent: str, now: datetime) -> dict[str, Any]:
        prompt = SLOT_USER_PROMPT.format(
            intent=intent,
            fields=SLOT_FIELDS[intent],
            now=now.isoformat(timespec="minutes"),
            text=text,
        )
        try:
            response = await self._ollama.complete(
                prompt,
                system=SLOT_SYSTEM_PROMPT,
                temperature=0.1,
                max_tokens=200,
                response_format="json",
                model=self._model,
            )
            model_slots = parse_model_slots(response.content)
        except CompletionError as exc:
            logger.warning("Model slot extraction failed: %s", exc)
            return {}
        except ExtractionFailure as exc:
            logger.warning("Ignoring model slots: %s", exc)
            return {}

        logger.debug("Model slots for %s: %s", intent, sorted(model_slots))
        return model_slots
