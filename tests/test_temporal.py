"""Tests for deterministic date/time parsing."""

from datetime import datetime

from kenny.planner.temporal import parse_datetime, parse_duration, parse_range, parse_recurrence


def _at(now, day, hour, minute=0):
    return datetime(2026, 3, day, hour, minute, tzinfo=now.tzinfo)


# ------------------------------------------------------------------
# parse_datetime
# ------------------------------------------------------------------


class TestParseDatetime:
    def test_tomorrow_with_clock(self, now):
        match = parse_datetime("call mom tomorrow at 3pm", now)
        assert match.value == _at(now, 5, 15)
        assert match.has_time is True

    def test_date_without_time_defaults_to_nine(self, now):
        match = parse_datetime("dentist tomorrow", now)
        assert match.value == _at(now, 5, 9)
        assert match.has_time is False

    def test_part_of_day(self, now):
        assert parse_datetime("dinner tomorrow evening", now).value == _at(now, 5, 18)
        assert parse_datetime("pack bags tonight", now).value == _at(now, 4, 20)

    def test_offset_is_exact(self, now):
        assert parse_datetime("in 2 hours", now).value == _at(now, 4, 12)
        assert parse_datetime("in 30 minutes", now).value == _at(now, 4, 10, 30)
        assert parse_datetime("in an hour", now).value == _at(now, 4, 11)

    def test_past_clock_time_rolls_to_tomorrow(self, now):
        # now is 10:00
        assert parse_datetime("at 9am", now).value == _at(now, 5, 9)

    def test_future_clock_time_stays_today(self, now):
        assert parse_datetime("at 4:30pm", now).value == _at(now, 4, 16, 30)

    def test_bare_small_hour_means_afternoon(self, now):
        assert parse_datetime("coffee at 3", now).value == _at(now, 4, 15)

    def test_weekday_with_noon(self, now):
        # 2026-03-04 is a Wednesday
        assert parse_datetime("lunch friday at noon", now).value == _at(now, 6, 12)

    def test_weekday_later_this_week(self, now):
        assert parse_datetime("monday", now).value == _at(now, 9, 9)

    def test_past_weekday_moves_a_week(self, now):
        assert parse_datetime("wednesday at 9am", now).value == _at(now, 11, 9)

    def test_next_same_weekday_is_never_today(self, now):
        assert parse_datetime("next wednesday at 5pm", now).value == _at(now, 11, 17)

    def test_calendar_date(self, now):
        assert parse_datetime("march 10th at 2pm", now).value == _at(now, 10, 14)

    def test_iso_date(self, now):
        match = parse_datetime("on 2026-03-20", now)
        assert match.value == _at(now, 20, 9)

    def test_keeps_timezone(self, now):
        assert parse_datetime("tomorrow", now).value.tzinfo == now.tzinfo

    def test_spans_cover_the_phrases(self, now):
        match = parse_datetime("tomorrow at 3pm", now)
        assert "tomorrow" in match.spans
        assert any("3pm" in s for s in match.spans)

    def test_nothing_temporal(self, now):
        assert parse_datetime("buy milk", now) is None


# ------------------------------------------------------------------
# parse_range
# ------------------------------------------------------------------


class TestParseRange:
    def test_start_inherits_meridiem(self, now):
        time_range = parse_range("from 2 to 4pm", now)
        assert time_range.start == _at(now, 4, 14)
        assert time_range.end == _at(now, 4, 16)
        assert time_range.duration_min == 120

    def test_dash_range_with_minutes(self, now):
        time_range = parse_range("10am-11:30am", now)
        assert time_range.duration_min == 90

    def test_range_on_mentioned_date(self, now):
        time_range = parse_range("tomorrow from 2 to 3pm", now)
        assert time_range.start == _at(now, 5, 14)

    def test_bare_numbers_are_not_a_range(self, now):
        assert parse_range("sync 9-10", now) is None

    def test_no_range(self, now):
        assert parse_range("at 3pm", now) is None


# ------------------------------------------------------------------
# parse_duration / parse_recurrence
# ------------------------------------------------------------------


class TestParseDuration:
    def test_hours(self):
        assert parse_duration("block focus time for 2 hours") == 120

    def test_an_hour(self):
        assert parse_duration("for an hour") == 60

    def test_half_an_hour(self):
        assert parse_duration("call for half an hour") == 30

    def test_minutes(self):
        assert parse_duration("for 45 minutes") == 45

    def test_hyphenated(self):
        assert parse_duration("a 30-minute standup") == 30

    def test_none(self):
        assert parse_duration("lunch with Sam") is None


class TestParseRecurrence:
    def test_every_weekday_name(self):
        assert parse_recurrence("yoga every monday") == "weekly:monday"

    def test_every_weekday(self):
        assert parse_recurrence("standup every weekday") == "weekdays"

    def test_daily(self):
        assert parse_recurrence("daily vitamins") == "daily"
        assert parse_recurrence("every day at 8am") == "daily"

    def test_weekly(self):
        assert parse_recurrence("weekly sync") == "weekly"

    def test_monthly(self):
        assert parse_recurrence("pay rent monthly") == "monthly"

    def test_none(self):
        assert parse_recurrence("lunch tomorrow") is None
