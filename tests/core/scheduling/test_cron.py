"""Tests for croncmd.core.scheduling.cron - parsing and next fire times."""

from __future__ import annotations

import os
import time
from datetime import date, datetime, timedelta, timezone

import pytest

from croncmd.core.errors import ParseError
from croncmd.core.scheduling.cron import (
    CronSchedule,
    EverySchedule,
    RebootSchedule,
    Schedule,
    parse,
    parse_duration,
)

UTC = timezone.utc


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


def new_york():
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    try:
        return ZoneInfo("America/New_York")
    except ZoneInfoNotFoundError:
        pytest.skip("tz database not available")


# ── Five-field expressions ───────────────────────────────────────────


class TestCronNext:
    """next() for five-field expressions (evaluated in UTC)."""

    def test_every_quarter_hour(self):
        """*/15 from 10:07 fires at 10:15, and from 10:15 at 10:30."""
        schedule = parse("*/15 * * * *", location=UTC)
        assert schedule.next(utc(2024, 1, 1, 10, 7)) == utc(2024, 1, 1, 10, 15)
        assert schedule.next(utc(2024, 1, 1, 10, 15)) == utc(2024, 1, 1, 10, 30)

    def test_next_is_strictly_after(self):
        """An instant that matches exactly is not returned again."""
        schedule = parse("0 * * * *", location=UTC)
        assert schedule.next(utc(2024, 1, 1, 10, 0)) == utc(2024, 1, 1, 11, 0)

    def test_seconds_are_ignored(self):
        schedule = parse("* * * * *", location=UTC)
        after = utc(2024, 1, 1, 10, 0, 59) + timedelta(microseconds=999)
        assert schedule.next(after) == utc(2024, 1, 1, 10, 1)

    def test_daily_midnight(self):
        schedule = parse("0 0 * * *", location=UTC)
        assert schedule.next(utc(2024, 1, 1, 10, 0)) == utc(2024, 1, 2, 0, 0)

    def test_year_rollover(self):
        schedule = parse("0 0 1 1 *", location=UTC)
        assert schedule.next(utc(2024, 6, 1)) == utc(2025, 1, 1)

    def test_leap_day(self):
        schedule = parse("0 0 29 2 *", location=UTC)
        assert schedule.next(utc(2024, 3, 1)) == utc(2028, 2, 29)

    def test_impossible_date_never_fires(self):
        """Feb 30 does not exist: the search gives up and returns None."""
        schedule = parse("0 0 30 2 *", location=UTC)
        assert schedule.next(utc(2024, 1, 1)) is None

    def test_fire_times_strictly_increase(self):
        schedule = parse("*/7 3-5 * * mon-fri", location=UTC)
        t = utc(2024, 1, 1)
        for _ in range(200):
            nxt = schedule.next(t)
            assert nxt is not None
            assert nxt > t
            t = nxt

    def test_result_matches_expression(self):
        schedule = parse("10,40 8-9 * * *", location=UTC)
        t = utc(2024, 1, 1)
        for _ in range(20):
            t = schedule.next(t)
            assert t.minute in (10, 40)
            assert t.hour in (8, 9)


class TestDayMatching:
    """Day-of-month / day-of-week combination rules."""

    def test_both_restricted_is_union(self):
        """0 0 1 * 1 fires on the 1st of the month and on every Monday."""
        schedule = parse("0 0 1 * 1", location=UTC)
        # 2024-01-29 is a Monday, 2024-02-01 a Thursday, 2024-02-05 a Monday
        assert schedule.next(utc(2024, 1, 29)) == utc(2024, 2, 1)
        assert schedule.next(utc(2024, 2, 1)) == utc(2024, 2, 5)

    def test_only_day_of_month(self):
        schedule = parse("0 0 1 * *", location=UTC)
        assert schedule.next(utc(2024, 1, 29)) == utc(2024, 2, 1)

    def test_only_day_of_week(self):
        schedule = parse("0 0 * * 1", location=UTC)
        assert schedule.next(utc(2024, 1, 29)) == utc(2024, 2, 5)

    def test_stepped_star_counts_as_restricted(self):
        """*/2 in day-of-week is a restriction, so the union rule applies."""
        schedule = parse("0 0 13 * */2", location=UTC)
        # Mon 2024-01-01 -> Tue 2024-01-02 (day-of-week 2), not the 13th
        assert schedule.next(utc(2024, 1, 1)) == utc(2024, 1, 2)

    def test_seven_is_sunday(self):
        schedule = parse("0 0 * * 7", location=UTC)
        assert schedule.weekdays == frozenset({0})
        assert schedule.next(utc(2024, 1, 1)) == utc(2024, 1, 7)


# ── Grammar ──────────────────────────────────────────────────────────


class TestGrammar:
    """Field syntax: names, ranges, steps, wildcards."""

    def test_returns_cron_schedule(self):
        schedule = parse("* * * * *")
        assert isinstance(schedule, CronSchedule)
        assert isinstance(schedule, Schedule)
        assert schedule.spec == "* * * * *"
        assert schedule.location is None

    def test_start_slash_step_runs_to_max(self):
        assert parse("5/20 * * * *").minutes == frozenset({5, 25, 45})

    def test_range_with_step(self):
        assert parse("0-30/10 * * * *").minutes == frozenset({0, 10, 20, 30})

    def test_list(self):
        assert parse("1,2,5-6 * * * *").minutes == frozenset({1, 2, 5, 6})

    def test_month_and_day_names(self):
        schedule = parse("0 12 * JAN,mar Mon-Wed")
        assert schedule.months == frozenset({1, 3})
        assert schedule.weekdays == frozenset({1, 2, 3})

    def test_question_mark_is_wildcard(self):
        schedule = parse("0 0 ? * ?")
        assert schedule.dom_star and schedule.dow_star
        assert schedule.days == frozenset(range(1, 32))

    def test_star_with_step_is_not_star(self):
        schedule = parse("0 0 */2 * *")
        assert not schedule.dom_star
        assert schedule.days == frozenset(range(1, 32, 2))

    def test_surrounding_whitespace(self):
        assert parse("  0   0 * *  *  ").minutes == frozenset({0})


class TestDescriptors:
    """@-shortcuts."""

    @pytest.mark.parametrize(
        "spec, after, expected",
        [
            ("@hourly", utc(2024, 1, 1, 10, 7), utc(2024, 1, 1, 11, 0)),
            ("@daily", utc(2024, 1, 1, 10, 7), utc(2024, 1, 2)),
            ("@midnight", utc(2024, 1, 1, 10, 7), utc(2024, 1, 2)),
            ("@weekly", utc(2024, 1, 1, 10, 7), utc(2024, 1, 7)),
            ("@monthly", utc(2024, 1, 1, 10, 7), utc(2024, 2, 1)),
            ("@yearly", utc(2024, 1, 1, 10, 7), utc(2025, 1, 1)),
            ("@annually", utc(2024, 1, 1, 10, 7), utc(2025, 1, 1)),
            ("@Daily", utc(2024, 1, 1, 10, 7), utc(2024, 1, 2)),
        ],
    )
    def test_shortcut_fire_times(self, spec, after, expected):
        assert parse(spec, location=UTC).next(after) == expected

    def test_reboot(self):
        schedule = parse("@reboot")
        assert isinstance(schedule, RebootSchedule)
        assert schedule.fires_at_start is True
        assert schedule.next(utc(2024, 1, 1)) is None

    def test_cron_schedules_do_not_fire_at_start(self):
        assert parse("@daily").fires_at_start is False
        assert parse("@every 1m").fires_at_start is False


class TestEvery:
    """@every <duration> fixed-interval timers."""

    def test_interval_from_whole_second(self):
        schedule = parse("@every 90s")
        assert isinstance(schedule, EverySchedule)
        assert schedule.delay == timedelta(seconds=90)
        after = utc(2024, 1, 1, 10, 0, 0) + timedelta(milliseconds=500)
        assert schedule.next(after) == utc(2024, 1, 1, 10, 1, 30)

    def test_compound_duration(self):
        assert parse("@every 1h30m").delay == timedelta(hours=1, minutes=30)

    @pytest.mark.parametrize(
        "spec, seconds",
        [("@every 500ms", 1), ("@every 1.5s", 1), ("@every 2500ms", 2)],
    )
    def test_rounded_to_whole_seconds(self, spec, seconds):
        assert parse(spec).delay == timedelta(seconds=seconds)

    @pytest.mark.parametrize("spec", ["@every 0s", "@every 0", "@every -5s"])
    def test_non_positive_parses_but_never_fires(self, spec):
        schedule = parse(spec)
        assert schedule.positive is False
        assert schedule.next(utc(2024, 1, 1)) is None

    def test_consecutive_fires_are_evenly_spaced(self):
        schedule = parse("@every 10m")
        first = schedule.next(utc(2024, 1, 1))
        second = schedule.next(first)
        assert second - first == timedelta(minutes=10)


class TestTimeZones:
    """TZ= / CRON_TZ= prefixes and DST handling."""

    def test_utc_prefix(self):
        schedule = parse("TZ=UTC 0 9 * * *")
        assert schedule.location is UTC
        assert schedule.spec == "TZ=UTC 0 9 * * *"

    def test_named_zone(self):
        new_york()
        schedule = parse("CRON_TZ=America/New_York 0 9 * * *")
        # 09:00 EST is 14:00 UTC
        assert schedule.next(utc(2024, 1, 1, 12, 0)) == utc(2024, 1, 1, 14, 0)

    def test_prefix_with_descriptor(self):
        schedule = parse("TZ=UTC @daily")
        assert schedule.next(utc(2024, 1, 1, 10)) == utc(2024, 1, 2)

    def test_spring_forward_gap_is_skipped(self):
        """02:30 does not exist on 2024-03-10 in New York."""
        ny = new_york()
        schedule = parse("30 2 * * *", location=ny)
        result = schedule.next(datetime(2024, 3, 10, 0, 0, tzinfo=ny))
        assert result.date() == date(2024, 3, 11)
        assert (result.hour, result.minute) == (2, 30)

    def test_gap_moves_to_next_valid_minute(self):
        ny = new_york()
        schedule = parse("*/30 * * * *", location=ny)
        result = schedule.next(datetime(2024, 3, 10, 1, 45, tzinfo=ny))
        assert result == utc(2024, 3, 10, 7, 0)

    def test_fall_back_ambiguous_time_fires_once(self):
        """01:30 happens twice on 2024-11-03; only the first one fires."""
        ny = new_york()
        schedule = parse("30 1 * * *", location=ny)
        first = schedule.next(datetime(2024, 11, 3, 0, 0, tzinfo=ny))
        assert first.timestamp() == utc(2024, 11, 3, 5, 30).timestamp()

        second = schedule.next(first)
        assert second.date() == date(2024, 11, 4)

    def test_second_pass_of_repeated_hour_does_not_go_back(self):
        ny = new_york()
        schedule = parse("30 1 * * *", location=ny)
        # 01:10 EST, after the first 01:30 (EDT) has already passed
        after = datetime(2024, 11, 3, 1, 10, fold=1, tzinfo=ny)
        result = schedule.next(after)
        assert result.timestamp() > after.timestamp()
        assert result.date() == date(2024, 11, 4)


@pytest.fixture
def local_new_york():
    """Make America/New_York the process-local zone for one test."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset not available")
    saved = os.environ.get("TZ")
    os.environ["TZ"] = "America/New_York"
    time.tzset()
    try:
        if time.tzname[0] != "EST":
            pytest.skip("system tz database not available")
        yield
    finally:
        if saved is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = saved
        time.tzset()


def walk(schedule: Schedule, after: datetime, until: datetime) -> list[datetime]:
    fires = []
    current = schedule.next(after)
    while current is not None and current.timestamp() <= until.timestamp():
        fires.append(current)
        current = schedule.next(current)
    return fires


class TestLocalZone:
    """Expressions without a zone evaluate in the process-local zone."""

    def test_daily_is_next_local_midnight(self, local_new_york):
        schedule = parse("0 0 * * *")
        assert schedule.location is None

        result = schedule.next(datetime(2024, 3, 9, 15, 0, tzinfo=timezone(timedelta(hours=-5))))
        assert (result.date(), result.hour, result.minute) == (date(2024, 3, 10), 0, 0)
        assert result.timestamp() == utc(2024, 3, 10, 5, 0).timestamp()

    def test_daily_from_utc_instant(self, local_new_york):
        # 12:00 UTC is 08:00 EDT; the next local midnight is 04:00 UTC
        result = parse("0 0 * * *").next(utc(2024, 6, 1, 12, 0))
        assert result.timestamp() == utc(2024, 6, 2, 4, 0).timestamp()
        assert result.utcoffset() == timedelta(hours=-4)

    def test_naive_after_is_local_wall_time(self, local_new_york):
        result = parse("0 9 * * *").next(datetime(2024, 1, 1, 8, 0))
        assert result.timestamp() == utc(2024, 1, 1, 14, 0).timestamp()

    def test_spring_forward(self, local_new_york):
        fires = walk(
            parse("*/30 * * * *"),
            utc(2024, 3, 10, 4, 0),
            utc(2024, 3, 10, 9, 0),
        )
        stamps = [f.timestamp() for f in fires]
        assert stamps == sorted(set(stamps))
        # 02:00-02:59 does not exist locally
        assert all(f.hour != 2 for f in fires)
        assert len(fires) == 10

    def test_fall_back(self, local_new_york):
        fires = walk(
            parse("*/30 * * * *"),
            utc(2024, 11, 3, 3, 0),
            utc(2024, 11, 3, 9, 0),
        )
        stamps = [f.timestamp() for f in fires]
        assert stamps == sorted(set(stamps))
        assert fires[-1].timestamp() <= utc(2024, 11, 3, 9, 0).timestamp()


# ── Errors ───────────────────────────────────────────────────────────


class TestParseErrors:
    """Malformed expressions are rejected with ParseError."""

    @pytest.mark.parametrize(
        "spec",
        [
            "",
            "   ",
            "* * * *",
            "* * * * * *",
            "*/0 * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * * 13 *",
            "* * * * 8",
            "5-1 * * * *",
            "-1 * * * *",
            "a * * * *",
            "* * * foo *",
            "*/x * * * *",
            "1,,2 * * * *",
            "@every",
            "@every soon",
            "@every 100000000h",
            "@bogus",
            "@daily now",
            "TZ=UTC",
            "TZ= * * * * *",
            "TZ=Not/AZone * * * * *",
        ],
    )
    def test_invalid(self, spec):
        with pytest.raises(ParseError):
            parse(spec)

    def test_error_carries_expression(self):
        with pytest.raises(ParseError) as exc_info:
            parse("*/0 * * * *")
        assert exc_info.value.spec == "*/0 * * * *"
        assert "step" in exc_info.value.reason
        assert "*/0 * * * *" in str(exc_info.value)

    def test_field_count_message(self):
        with pytest.raises(ParseError, match="expected exactly 5 fields, found 4"):
            parse("* * * *")


class TestParseDuration:
    """Go-style duration strings."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("1.5h", timedelta(minutes=90)),
            ("90s", timedelta(seconds=90)),
            ("250ms", timedelta(milliseconds=250)),
            ("-2m", timedelta(minutes=-2)),
            ("+3s", timedelta(seconds=3)),
            ("0", timedelta(0)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "10", "5x", "h", "1h 30m", "-"])
    def test_invalid(self, text):
        with pytest.raises(ParseError):
            parse_duration(text)

    @pytest.mark.parametrize("text", ["99999999999h", "100000000h", "2562048h"])
    def test_out_of_range(self, text):
        """Anything past a 64-bit nanosecond count is rejected."""
        with pytest.raises(ParseError, match="invalid duration"):
            parse_duration(text)

    def test_largest_accepted(self):
        assert parse_duration("2562047h") == timedelta(hours=2562047)
