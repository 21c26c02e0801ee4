"""Recurrence rules for bookings.

Rules use a subset of the iCalendar RRULE syntax:

    FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;COUNT=10;UNTIL=20250630

- FREQ is required (DAILY, WEEKLY, MONTHLY, YEARLY)
- INTERVAL defaults to 1
- BYDAY applies to weekly rules only
- COUNT and UNTIL bound the series; the safety cap always applies

Unknown keys are ignored; a malformed value makes the whole rule invalid.
Occurrences are expanded with dateutil's ``rrule``.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from itertools import islice
from typing import Any

from dateutil.rrule import DAILY, MO, MONTHLY, WEEKLY, YEARLY, rrule, rruleset

DEFAULT_MAX_OCCURRENCES = 100

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


_UNITS = {
    Frequency.DAILY: ("Daily", "days"),
    Frequency.WEEKLY: ("Weekly", "weeks"),
    Frequency.MONTHLY: ("Monthly", "months"),
    Frequency.YEARLY: ("Yearly", "years"),
}

_RRULE_FREQUENCIES = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.YEARLY: YEARLY,
}
_MONTH_BASED = (Frequency.MONTHLY, Frequency.YEARLY)


@dataclass(frozen=True)
class RecurrenceRule:
    """Parsed recurrence rule. ``by_day`` holds weekdays with Monday = 0."""

    frequency: Frequency
    interval: int = 1
    by_day: tuple[int, ...] = ()
    count: int | None = None
    until: date | None = None


def _positive_int(value: str) -> int | None:
    if not value.isdigit():
        return None
    number = int(value)
    return number if number >= 1 else None


def _parse_until(value: str) -> date | None:
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        return None


def parse_recurrence(text: str | None) -> RecurrenceRule | None:
    """Parse a rule string, returning None when it is missing or invalid."""
    if not text or not text.strip():
        return None

    frequency: Frequency | None = None
    interval = 1
    by_day: tuple[int, ...] = ()
    count: int | None = None
    until: date | None = None

    for part in text.strip().split(";"):
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            return None
        key = key.strip().upper()
        value = value.strip().upper()

        if key == "FREQ":
            try:
                frequency = Frequency(value)
            except ValueError:
                return None
        elif key == "INTERVAL":
            parsed = _positive_int(value)
            if parsed is None:
                return None
            interval = parsed
        elif key == "BYDAY":
            codes = [code.strip() for code in value.split(",") if code.strip()]
            if not codes or any(code not in WEEKDAY_CODES for code in codes):
                return None
            by_day = tuple(sorted({WEEKDAY_CODES.index(code) for code in codes}))
        elif key == "COUNT":
            count = _positive_int(value)
            if count is None:
                return None
        elif key == "UNTIL":
            until = _parse_until(value)
            if until is None:
                return None

    if frequency is None:
        return None
    return RecurrenceRule(
        frequency=frequency,
        interval=interval,
        by_day=by_day,
        count=count,
        until=until,
    )


def format_recurrence(rule: RecurrenceRule) -> str:
    """Serialize a rule. INTERVAL is omitted when it is 1."""
    parts = [f"FREQ={rule.frequency.value}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    if rule.by_day:
        parts.append("BYDAY=" + ",".join(WEEKDAY_CODES[d] for d in rule.by_day))
    if rule.count:
        parts.append(f"COUNT={rule.count}")
    if rule.until:
        parts.append(f"UNTIL={rule.until.strftime('%Y%m%d')}")
    return ";".join(parts)


def _latest(until: date | None, end: date | None) -> date | None:
    if until and end:
        return min(until, end)
    return until or end


def build_rrule(
    start: date, rule: RecurrenceRule, until: date | None = None
) -> rrule:
    """dateutil rule for the series starting at ``start``.

    Monthly and yearly series starting after the 28th pick the earlier of
    that day and the month's last day, so Jan 31 continues Feb 28, Mar 31.
    """
    options: dict[str, Any] = {}
    if rule.frequency is Frequency.WEEKLY and rule.by_day:
        options["byweekday"] = rule.by_day
    elif rule.frequency in _MONTH_BASED and start.day > 28:
        options["bymonthday"] = (start.day, -1)
        options["bysetpos"] = 1
        if rule.frequency is Frequency.YEARLY:
            options["bymonth"] = start.month
    return rrule(
        _RRULE_FREQUENCIES[rule.frequency],
        dtstart=datetime.combine(start, time.min),
        interval=rule.interval,
        wkst=MO,
        until=datetime.combine(until, time.min) if until else None,
        **options,
    )


def generate_occurrences(
    start: date,
    rule: RecurrenceRule | None,
    end: date | None = None,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[date]:
    """Dates of a series, starting with ``start`` itself.

    Bounded by the earlier of ``rule.until`` and ``end``, by ``rule.count``,
    and by ``max_occurrences``. ``start`` counts towards the bounds even
    when it does not match the rule's weekdays.
    """
    if rule is None:
        return [start]

    cap = max(1, min(rule.count or max_occurrences, max_occurrences))
    series = rruleset()
    series.rdate(datetime.combine(start, time.min))
    series.rrule(build_rrule(start, rule, until=_latest(rule.until, end)))
    return [occurrence.date() for occurrence in islice(series, cap)]


def describe_recurrence(rule: RecurrenceRule | None) -> str:
    """Human readable summary, e.g. "Every 2 weeks on Monday, Wednesday"."""
    if rule is None:
        return "One-time event"

    single, plural = _UNITS[rule.frequency]
    text = single if rule.interval == 1 else f"Every {rule.interval} {plural}"
    if rule.frequency is Frequency.WEEKLY and rule.by_day:
        text += " on " + ", ".join(WEEKDAY_NAMES[d] for d in rule.by_day)

    if rule.count:
        text += f", {rule.count} times"
    elif rule.until:
        until = rule.until
        text += f", until {until.strftime('%b')} {until.day}, {until.year}"
    return text
