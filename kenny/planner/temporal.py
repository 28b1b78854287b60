"""Deterministic date/time parsing for slot extraction.

Pure functions, no I/O. Every function that resolves relative expressions
takes an explicit ``now`` (timezone-aware) so results are reproducible.

Relative expressions (today, tomorrow, weekdays, "in 2 hours", clock
times) are resolved here directly; explicit calendar dates ("March 5th",
"2026-11-02", "11/2") are handed to dateparser.
"""

import logging
import re
from datetime import date, datetime, time, timedelta

import dateparser
from pydantic import BaseModel

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_HOUR = 9

_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)

_CALENDAR_DATE = (
    r"\b(?:\d{4}-\d{2}-\d{2}"
    rf"|(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?"
    rf"|\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS})(?:,?\s+\d{{4}})?"
    r"|\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b"
)

_WEEKDAY = r"\b(?:(?P<mod>next|this|on|every)\s+)?(?P<day>" + "|".join(WEEKDAYS) + r")s?\b"

_MERIDIEM = r"[ap]\.?m\.?"

_CLOCK = rf"\b(?:at\s+)?(?P<hour>\d{{1,2}})(?::(?P<minute>\d{{2}}))?\s*(?P<meridiem>{_MERIDIEM})(?!\w)"

_AT_HOUR = r"\bat\s+(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?(?![\d/:]|\s*(?:[ap]\.?m))"

_OFFSET = r"\bin\s+(?P<n>an?|\d+)\s+(?P<unit>minute|min|hour|hr|day|week)s?\b"

_RANGE = (
    r"(?<![\d/-])\b(?P<from>from\s+)?(?P<start>\d{1,2}(?::\d{2})?)\s*(?P<start_m>" + _MERIDIEM + r")?"
    r"\s*(?:-|–|to|until|till)\s*"
    r"(?P<end>\d{1,2}(?::\d{2})?)\s*(?P<end_m>" + _MERIDIEM + r")?(?![\w/-])"
)

_PARTS_OF_DAY = {
    "noon": 12,
    "midday": 12,
    "midnight": 0,
    "morning": 9,
    "afternoon": 15,
    "evening": 18,
    "tonight": 20,
}

_UNIT_DELTAS = {
    "minute": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "hr": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}


class TemporalMatch(BaseModel):
    """A resolved date/time and the text fragments it was parsed from."""

    value: datetime
    spans: list[str]
    has_time: bool


class TimeRange(BaseModel):
    start: datetime
    end: datetime
    span: str

    @property
    def duration_min(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def _to_24h(hour: int, meridiem: str | None) -> int:
    if not meridiem:
        return hour
    is_pm = meridiem.lower().startswith("p")
    if hour == 12:
        return 12 if is_pm else 0
    return hour + 12 if is_pm else hour


def _find_clock(lowered: str) -> tuple[time, str] | None:
    """Return the first explicit clock time and its span."""
    m = re.search(_CLOCK, lowered)
    if m:
        hour = _to_24h(int(m.group("hour")), m.group("meridiem"))
        minute = int(m.group("minute") or 0)
        if hour < 24 and minute < 60:
            return time(hour, minute), m.group(0).strip()

    m = re.search(_AT_HOUR, lowered)
    if m:
        hour = int(m.group("hour"))
        minute = int(m.group("minute") or 0)
        # "at 3" in conversation means the afternoon
        if 1 <= hour <= 7:
            hour += 12
        if hour < 24 and minute < 60:
            return time(hour, minute), m.group(0).strip()

    for word, hour in _PARTS_OF_DAY.items():
        if word in ("morning", "afternoon", "evening", "tonight"):
            continue
        if re.search(rf"\b{word}\b", lowered):
            return time(hour, 0), word
    return None


def _find_part_of_day(lowered: str) -> tuple[int, str] | None:
    for word in ("morning", "afternoon", "evening", "tonight"):
        if re.search(rf"\b{word}\b", lowered):
            return _PARTS_OF_DAY[word], word
    return None


def _parse_calendar_date(span: str, now: datetime) -> date | None:
    parsed = dateparser.parse(
        span,
        settings={
            "PREFER_DATES_FROM": "future",
            "RELATIVE_BASE": now.replace(tzinfo=None),
            "RETURN_AS_TIMEZONE_AWARE": False,
            "DATE_ORDER": "MDY",
        },
    )
    if parsed is None:
        logger.debug("dateparser could not resolve %r", span)
        return None
    return parsed.date()


def _find_date(lowered: str, now: datetime) -> tuple[date, str, bool] | None:
    """Return (date, span, rolls_weekly) for the first date expression.

    ``rolls_weekly`` is true for weekday names, which move a week forward
    when the resolved moment is already past.
    """
    today = now.date()

    if re.search(r"\bday after tomorrow\b", lowered):
        return today + timedelta(days=2), "day after tomorrow", False
    if re.search(r"\btomorrow\b", lowered):
        return today + timedelta(days=1), "tomorrow", False
    if re.search(r"\b(?:today|tonight)\b", lowered):
        span = "tonight" if "tonight" in lowered else "today"
        return today, span, False
    if re.search(r"\bnext week\b", lowered):
        return today + timedelta(weeks=1), "next week", False
    if re.search(r"\b(?:this )?weekend\b", lowered) and "every weekend" not in lowered:
        delta = (5 - today.weekday()) % 7
        m = re.search(r"\b(?:this )?weekend\b", lowered)
        return today + timedelta(days=delta), m.group(0), True

    m = re.search(_WEEKDAY, lowered)
    if m and not re.search(r"\bevery weekday\b", lowered):
        target = WEEKDAYS.index(m.group("day"))
        delta = (target - today.weekday()) % 7
        if m.group("mod") == "next" and delta == 0:
            delta = 7
        return today + timedelta(days=delta), m.group(0), True

    m = re.search(_CALENDAR_DATE, lowered)
    if m:
        resolved = _parse_calendar_date(m.group(0), now)
        if resolved is not None:
            return resolved, m.group(0), False
    return None


def parse_datetime(text: str, now: datetime | None = None) -> TemporalMatch | None:
    """Find and resolve the first date/time expression in *text*.

    Rules:
        - "in N minutes/hours/days" is an exact offset from *now*.
        - A date without a time resolves to 09:00 (or the part of day
          mentioned, e.g. "tomorrow evening" → 18:00, "tonight" → 20:00).
        - A time without a date is today, or tomorrow if already past.
        - A weekday already past this week moves to next week.

    Returns:
        TemporalMatch in *now*'s timezone, or None if nothing was found.
    """
    now = now or datetime.now().astimezone()
    lowered = text.lower()

    m = re.search(_OFFSET, lowered)
    if m:
        n = 1 if m.group("n") in ("a", "an") else int(m.group("n"))
        value = now + n * _UNIT_DELTAS[m.group("unit")]
        return TemporalMatch(value=value.replace(second=0, microsecond=0), spans=[m.group(0)], has_time=True)

    found_date = _find_date(lowered, now)
    found_clock = _find_clock(lowered)
    part_of_day = _find_part_of_day(lowered)

    if found_date is None and found_clock is None and part_of_day is None:
        return None

    spans: list[str] = []
    if found_date is not None:
        day, span, rolls_weekly = found_date
        spans.append(span)
    else:
        day, rolls_weekly = now.date(), False

    if found_clock is not None:
        clock, clock_span = found_clock
        spans.append(clock_span)
        has_time = True
    elif part_of_day is not None:
        clock = time(part_of_day[0], 0)
        if part_of_day[1] not in spans:
            spans.append(part_of_day[1])
        has_time = True
    else:
        clock = time(DEFAULT_HOUR, 0)
        has_time = False

    value = datetime.combine(day, clock, tzinfo=now.tzinfo)

    if value <= now:
        if found_date is None:
            value += timedelta(days=1)
        elif rolls_weekly:
            value += timedelta(weeks=1)

    return TemporalMatch(value=value, spans=spans, has_time=has_time)


def parse_range(text: str, now: datetime | None = None) -> TimeRange | None:
    """Parse a clock range such as "from 2 to 4pm" or "10am-11:30am".

    The range is placed on the date mentioned in *text* (today if none).
    A start without am/pm inherits the end's.
    """
    now = now or datetime.now().astimezone()
    lowered = text.lower()

    m = re.search(_RANGE, lowered)
    if m is None:
        return None
    start_m, end_m = m.group("start_m"), m.group("end_m")
    if not (m.group("from") or start_m or end_m):
        return None

    def _split(value: str) -> tuple[int, int]:
        hour, _, minute = value.partition(":")
        return int(hour), int(minute or 0)

    start_h, start_min = _split(m.group("start"))
    end_h, end_min = _split(m.group("end"))
    end_h = _to_24h(end_h, end_m)
    if start_m:
        start_h = _to_24h(start_h, start_m)
    elif end_m:
        inherited = _to_24h(start_h, end_m)
        start_h = inherited if inherited <= end_h else start_h
    if not (start_h < 24 and end_h < 24 and start_min < 60 and end_min < 60):
        return None

    found_date = _find_date(lowered, now)
    day = found_date[0] if found_date else now.date()
    start = datetime.combine(day, time(start_h, start_min), tzinfo=now.tzinfo)
    end = datetime.combine(day, time(end_h, end_min), tzinfo=now.tzinfo)
    if end <= start:
        end += timedelta(days=1)
    return TimeRange(start=start, end=end, span=m.group(0).strip())


def parse_duration(text: str) -> int | None:
    """Return an explicit duration in minutes ("for 2 hours", "30-minute")."""
    lowered = text.lower()

    if re.search(r"\bfor\s+half\s+an\s+hour\b", lowered):
        return 30
    if re.search(r"\bfor\s+an\s+hour\s+and\s+a\s+half\b", lowered):
        return 90

    m = re.search(r"\bfor\s+(?P<n>an?|\d+(?:\.\d+)?)\s*(?P<unit>hours?|hrs?|minutes?|mins?)\b", lowered)
    if m is None:
        m = re.search(r"\b(?P<n>\d+)-(?P<unit>hour|minute|min)\b", lowered)
    if m is None:
        return None

    n = 1.0 if m.group("n") in ("a", "an") else float(m.group("n"))
    if m.group("unit").startswith("h"):
        return int(n * 60)
    return int(n)


def parse_recurrence(text: str) -> str | None:
    """Map "every ..." / "daily" style phrases to a recurrence rule string."""
    lowered = text.lower()

    if re.search(r"\bevery\s+weekday\b|\bon\s+weekdays\b", lowered):
        return "weekdays"
    if re.search(r"\bevery\s+weekend\b|\bon\s+weekends\b", lowered):
        return "weekends"
    m = re.search(r"\bevery\s+(" + "|".join(WEEKDAYS) + r")\b", lowered)
    if m:
        return f"weekly:{m.group(1)}"
    if re.search(r"\bevery\s+day\b|\bdaily\b|\beach\s+day\b", lowered):
        return "daily"
    if re.search(r"\bevery\s+week\b|\bweekly\b", lowered):
        return "weekly"
    if re.search(r"\bevery\s+month\b|\bmonthly\b", lowered):
        return "monthly"
    return None
