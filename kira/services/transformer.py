"""
Turns a raw activity list into the four views the graph template draws:

  step 1  sample             — up to 50 records in scrambled order
  step 2  calendar           — day × hour matrix, grouped into 7-day layers
  step 3  weekday_histogram  — count per day of week
  step 4  week_hour_grid     — 7 × 24 counts, flattened

All day/hour bucketing is done in UTC. Sunday is day 0.
"""
import random
from collections import Counter
from collections.abc import Sequence
from datetime import date

from kira.schemas import (
    ActivityRecord,
    CalendarDay,
    CalendarView,
    GridCell,
    StructuredViews,
    ViewMetadata,
    WeekdayCount,
)

SAMPLE_SIZE = 50
WEEK_SPAN_DAYS = 7

WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
WEEKDAYS_SHORT = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def day_of_week(d: date) -> int:
    """Sunday=0 … Saturday=6."""
    return (d.weekday() + 1) % 7


def sample_view(
    records: Sequence[ActivityRecord], rng: random.Random | None = None
) -> tuple[ActivityRecord, ...]:
    shuffled = list(records)
    (rng or random.Random()).shuffle(shuffled)
    return tuple(shuffled[:SAMPLE_SIZE])


def calendar_view(records: Sequence[ActivityRecord]) -> CalendarView:
    days: dict[str, list[int]] = {}
    for record in records:
        key = record.timestamp.date().isoformat()
        if key not in days:
            days[key] = [0] * 24
        days[key][record.timestamp.hour] += 1

    weeks: list[list[CalendarDay]] = []
    current: list[CalendarDay] = []
    week_start: date | None = None
    for key in sorted(days):
        day = date.fromisoformat(key)
        if week_start is None:
            week_start = day
        elif (day - week_start).days >= WEEK_SPAN_DAYS:
            if current:
                weeks.append(current)
            current = []
            week_start = day
        current.append(
            CalendarDay(date=key, day_of_week=day_of_week(day), hours=days[key])
        )
    if current:
        weeks.append(current)

    return CalendarView(days=days, weeks=weeks)


def weekday_histogram(records: Sequence[ActivityRecord]) -> list[WeekdayCount]:
    counts = [0] * 7
    for record in records:
        counts[day_of_week(record.timestamp.date())] += 1
    return [WeekdayCount(day=name, count=counts[i]) for i, name in enumerate(WEEKDAYS)]


def week_hour_grid(records: Sequence[ActivityRecord]) -> list[GridCell]:
    counts = [0] * (7 * 24)
    for record in records:
        counts[day_of_week(record.timestamp.date()) * 24 + record.timestamp.hour] += 1
    return [
        GridCell(
            day=WEEKDAYS_SHORT[day],
            day_index=day,
            hour=hour,
            count=counts[day * 24 + hour],
        )
        for day in range(7)
        for hour in range(24)
    ]


def build_metadata(identity: str, records: Sequence[ActivityRecord]) -> ViewMetadata:
    if not records:
        return ViewMetadata(
            identity=identity, total=0, start=None, end=None, by_kind={}, average_per_day=0.0
        )

    start = min(r.timestamp for r in records)
    end = max(r.timestamp for r in records)
    span_days = (end - start).total_seconds() / 86400
    average = round(len(records) / span_days, 2) if span_days > 0 else 0.0

    return ViewMetadata(
        identity=identity,
        total=len(records),
        start=start,
        end=end,
        by_kind=dict(Counter(r.kind for r in records)),
        average_per_day=average,
    )


def transform(
    records: Sequence[ActivityRecord],
    identity: str = "",
    rng: random.Random | None = None,
) -> StructuredViews:
    """Build all four views from ``records``. The input is never mutated."""
    return StructuredViews(
        sample=sample_view(records, rng),
        calendar=calendar_view(records),
        weekday_histogram=weekday_histogram(records),
        week_hour_grid=week_hour_grid(records),
        metadata=build_metadata(identity, records),
    )
