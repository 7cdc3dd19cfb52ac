"""Cron expression parsing and next-fire-time computation.

``parse()`` turns a schedule expression into an immutable ``Schedule`` whose
``next(after)`` returns the first fire time strictly after ``after``.

Supported syntax:

    ┌──────────── minute        0-59
    │ ┌────────── hour          0-23
    │ │ ┌──────── day of month  1-31
    │ │ │ ┌────── month         1-12 or jan-dec
    │ │ │ │ ┌──── day of week   0-7 or sun-sat (0 and 7 are Sunday)
    │ │ │ │ │
    * * * * *

    Each field is a comma-separated list of ``*``, ``?``, ``N``, ``N-M``,
    ``*/S``, ``N/S`` (same as ``N-max/S``) and ``N-M/S``.

    Shortcuts: @yearly @annually @monthly @weekly @daily @midnight @hourly
    @every <duration> @reboot

    A ``TZ=Area/City`` or ``CRON_TZ=Area/City`` prefix evaluates the
    expression in that zone instead of the local one.

When both day-of-month and day-of-week are restricted the job fires when
*either* matches; when one of them is ``*`` (or ``?``) only the other one
constrains the day. ``*/2`` counts as restricted.

Examples:
    >>> from datetime import datetime, timezone
    >>> every_quarter = parse("*/15 * * * *", location=timezone.utc)
    >>> every_quarter.next(datetime(2024, 1, 1, 10, 7, tzinfo=timezone.utc))
    datetime.datetime(2024, 1, 1, 10, 15, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import ClassVar, Protocol, runtime_checkable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croncmd.core.errors import ParseError

# Calendar searches give up after this many years without a match
SEARCH_YEARS = 5


@dataclass(frozen=True)
class Bounds:
    """Valid range and aliases for one cron field."""

    name: str
    min: int
    max: int
    # Upper end used by ``*`` and ``N/S`` (day-of-week accepts 7 but stops at 6)
    last: int
    names: tuple[tuple[str, int], ...] = ()

    def lookup(self, token: str) -> int | None:
        token = token.lower()
        for name, value in self.names:
            if name == token:
                return value
        return None


MINUTES = Bounds("minute", 0, 59, 59)
HOURS = Bounds("hour", 0, 23, 23)
DAYS_OF_MONTH = Bounds("day-of-month", 1, 31, 31)
MONTHS = Bounds(
    "month",
    1,
    12,
    12,
    tuple(
        (name, i + 1)
        for i, name in enumerate(
            ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
        )
    ),
)
DAYS_OF_WEEK = Bounds(
    "day-of-week",
    0,
    7,
    6,
    tuple((name, i) for i, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])),
)

DESCRIPTORS: dict[str, str] = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_TZ_PREFIXES = ("TZ=", "CRON_TZ=")

_DURATION_TERM = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
# Largest duration a signed 64-bit nanosecond count can hold (about 292 years)
_MAX_DURATION_SECONDS = (2**63 - 1) / 1e9


# =============================================================================
# Schedules
# =============================================================================


@runtime_checkable
class Schedule(Protocol):
    """Anything that can answer "when is the next fire time after t?"."""

    spec: str
    fires_at_start: ClassVar[bool]

    def next(self, after: datetime) -> datetime | None:
        """Return the first fire time strictly after ``after``, or None."""
        ...


@dataclass(frozen=True)
class CronSchedule:
    """A five-field calendar schedule."""

    spec: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    dom_star: bool = False
    dow_star: bool = False
    location: tzinfo | None = field(default=None, compare=False)

    fires_at_start: ClassVar[bool] = False

    def next(self, after: datetime) -> datetime | None:
        tz = self.location
        # Timestamps, not datetimes: same-zone comparisons ignore ``fold``
        floor = _as_aware(after, tz).timestamp()
        candidate = _to_wall(after, tz).replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate.year + SEARCH_YEARS

        while candidate.year <= limit:
            if candidate.month not in self.months:
                candidate = _first_of_next_month(candidate)
                continue
            if not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue

            instant = _resolve(candidate, tz)
            if instant is not None and instant.timestamp() > floor:
                return instant
            candidate += timedelta(minutes=1)

        return None

    def _day_matches(self, wall: datetime) -> bool:
        dom_match = wall.day in self.days
        # datetime: Monday=0 .. Sunday=6; cron: Sunday=0 .. Saturday=6
        dow_match = (wall.weekday() + 1) % 7 in self.weekdays
        if self.dom_star or self.dow_star:
            return dom_match and dow_match
        return dom_match or dow_match


@dataclass(frozen=True)
class EverySchedule:
    """A fixed-interval timer (``@every <duration>``)."""

    spec: str
    delay: timedelta
    location: tzinfo | None = field(default=None, compare=False)

    fires_at_start: ClassVar[bool] = False

    @property
    def positive(self) -> bool:
        return self.delay > timedelta(0)

    def next(self, after: datetime) -> datetime | None:
        if not self.positive:
            return None
        return _as_aware(after, self.location).replace(microsecond=0) + self.delay


@dataclass(frozen=True)
class RebootSchedule:
    """Fires exactly once, when the scheduler starts."""

    spec: str = "@reboot"

    fires_at_start: ClassVar[bool] = True

    def next(self, after: datetime) -> datetime | None:
        return None


# =============================================================================
# Parsing
# =============================================================================


def parse(spec: str, location: tzinfo | None = None) -> Schedule:
    """Parse a schedule expression.

    Args:
        spec: Five-field cron expression or ``@`` shortcut, optionally
            prefixed with ``TZ=<zone>``
        location: Zone to evaluate in; None means the local zone

    Raises:
        ParseError: The expression is malformed. Nothing is partially parsed.
    """
    if not isinstance(spec, str) or not spec.strip():
        raise ParseError("empty schedule expression", spec=spec)

    text = spec.strip()
    if text.startswith(_TZ_PREFIXES):
        prefix, *remainder = text.split(None, 1)
        location = _load_zone(prefix.split("=", 1)[1], spec)
        text = remainder[0].strip() if remainder else ""
        if not text:
            raise ParseError("missing expression after time zone", spec=spec)

    if text.startswith("@"):
        return _parse_descriptor(text, spec, location)

    fields = text.split()
    if len(fields) != 5:
        raise ParseError(f"expected exactly 5 fields, found {len(fields)}", spec=spec)
    return _build_cron(spec, fields, location)


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration such as ``1h30m``, ``90s`` or ``1.5h``."""
    value = text.strip()
    sign = 1.0
    if value[:1] in ("+", "-"):
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]

    if value == "0":
        return timedelta(0)
    if not value:
        raise ParseError(f"invalid duration {text!r}")

    seconds = 0.0
    pos = 0
    while pos < len(value):
        match = _DURATION_TERM.match(value, pos)
        if match is None:
            raise ParseError(f"invalid duration {text!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        if seconds > _MAX_DURATION_SECONDS:
            raise ParseError(f"invalid duration {text!r}")
        pos = match.end()

    return timedelta(seconds=sign * seconds)


def _parse_descriptor(text: str, spec: str, location: tzinfo | None) -> Schedule:
    keyword, *remainder = text.split(None, 1)
    keyword = keyword.lower()
    rest = remainder[0].strip() if remainder else ""

    if keyword == "@every":
        if not rest:
            raise ParseError("@every requires a duration", spec=spec)
        delay = parse_duration(rest)
        if delay > timedelta(0):
            # Whole seconds only, at least one
            delay = timedelta(seconds=max(1, int(delay.total_seconds())))
        return EverySchedule(spec=spec, delay=delay, location=location)

    if rest:
        raise ParseError(f"unexpected text after {keyword}", spec=spec)

    if keyword == "@reboot":
        return RebootSchedule(spec=spec)

    expansion = DESCRIPTORS.get(keyword)
    if expansion is None:
        raise ParseError(f"unrecognized descriptor {keyword}", spec=spec)
    return _build_cron(spec, expansion.split(), location)


def _build_cron(spec: str, fields: list[str], location: tzinfo | None) -> CronSchedule:
    try:
        minutes, _ = _parse_field(fields[0], MINUTES)
        hours, _ = _parse_field(fields[1], HOURS)
        days, dom_star = _parse_field(fields[2], DAYS_OF_MONTH)
        months, _ = _parse_field(fields[3], MONTHS)
        weekdays, dow_star = _parse_field(fields[4], DAYS_OF_WEEK)
    except ParseError as e:
        raise ParseError(e.reason, spec=spec) from None

    return CronSchedule(
        spec=spec,
        minutes=minutes,
        hours=hours,
        days=days,
        months=months,
        # 7 is an alias for Sunday
        weekdays=frozenset(d % 7 for d in weekdays),
        dom_star=dom_star,
        dow_star=dow_star,
        location=location,
    )


def _parse_field(expr: str, bounds: Bounds) -> tuple[frozenset[int], bool]:
    """Parse one field into its value set and whether it is unrestricted."""
    values: set[int] = set()
    star = False
    for term in expr.split(","):
        term_values, term_star = _parse_term(term, bounds)
        values |= term_values
        star = star or term_star
    return frozenset(values), star


def _parse_term(term: str, bounds: Bounds) -> tuple[set[int], bool]:
    if not term:
        raise ParseError(f"empty {bounds.name} term")

    range_part, has_step, step_part = term.partition("/")
    step = 1
    if has_step:
        if not _is_number(step_part):
            raise ParseError(f"invalid {bounds.name} step {step_part!r}")
        step = int(step_part)
        if step <= 0:
            raise ParseError(f"{bounds.name} step must be positive, got {step}")

    if range_part in ("*", "?"):
        start, end = bounds.min, bounds.last
        star = step == 1
    else:
        low, has_dash, high = range_part.partition("-")
        start = _parse_value(low, bounds)
        if has_dash:
            end = _parse_value(high, bounds)
        elif has_step:
            end = bounds.last
        else:
            end = start
        star = False

        if start < bounds.min or end > bounds.max:
            raise ParseError(
                f"{bounds.name} value out of range in {term!r} "
                f"(allowed {bounds.min}-{bounds.max})"
            )
        if start > end:
            raise ParseError(f"{bounds.name} range {term!r} starts after it ends")

    return set(range(start, end + 1, step)), star


def _parse_value(token: str, bounds: Bounds) -> int:
    if _is_number(token):
        return int(token)
    named = bounds.lookup(token)
    if named is None:
        raise ParseError(f"invalid {bounds.name} value {token!r}")
    return named


def _is_number(token: str) -> bool:
    return token.isascii() and token.isdigit()


def _load_zone(name: str, spec: str) -> tzinfo:
    if not name:
        raise ParseError("empty time zone", spec=spec)
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ParseError(f"unknown time zone {name!r}", spec=spec, cause=e) from e


# =============================================================================
# Wall-clock helpers
#
# Searches run over naive wall-clock times in the schedule's zone. A ``tz`` of
# None means the process-local zone, handled through naive datetimes so the
# platform's DST rules apply.
# =============================================================================


def _to_wall(instant: datetime, tz: tzinfo | None) -> datetime:
    if instant.tzinfo is None:
        return instant
    if tz is None:
        return instant.astimezone().replace(tzinfo=None)
    return instant.astimezone(tz).replace(tzinfo=None)


def _timestamp(wall: datetime, tz: tzinfo | None, fold: int = 0) -> float:
    if tz is None:
        return wall.replace(fold=fold).timestamp()
    return wall.replace(tzinfo=tz, fold=fold).timestamp()


def _from_timestamp(ts: float, tz: tzinfo | None) -> datetime:
    utc = datetime.fromtimestamp(ts, timezone.utc)
    if tz is None:
        return utc.astimezone()
    return utc.astimezone(tz)


def _as_aware(instant: datetime, tz: tzinfo | None) -> datetime:
    if instant.tzinfo is not None:
        return instant
    return _from_timestamp(_timestamp(instant, tz, instant.fold), tz)


def _resolve(wall: datetime, tz: tzinfo | None) -> datetime | None:
    """Map a wall-clock time to an instant; None if it falls in a DST gap.

    Ambiguous times resolve to their first occurrence.
    """
    ts = _timestamp(wall, tz, fold=0)
    instant = _from_timestamp(ts, tz)
    if instant.replace(tzinfo=None) != wall:
        return None
    return instant


def _first_of_next_month(wall: datetime) -> datetime:
    if wall.month == 12:
        return wall.replace(year=wall.year + 1, month=1, day=1, hour=0, minute=0)
    return wall.replace(month=wall.month + 1, day=1, hour=0, minute=0)


__all__ = [
    "Schedule",
    "CronSchedule",
    "EverySchedule",
    "RebootSchedule",
    "DESCRIPTORS",
    "parse",
    "parse_duration",
]
