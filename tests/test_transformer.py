import random
from datetime import datetime, timedelta, timezone

from conftest import record

from kira.services.transformer import (
    SAMPLE_SIZE,
    build_metadata,
    calendar_view,
    day_of_week,
    transform,
    week_hour_grid,
    weekday_histogram,
)

MONDAY = 1


def _example():
    return [
        record("commit", "2024-01-01T10:00:00Z"),
        record("commit", "2024-01-01T10:30:00Z"),
        record("bookmark", "2024-01-08T09:00:00Z"),
    ]


def _spread(n: int, seed: int = 7):
    rng = random.Random(seed)
    base = datetime(2024, 3, 1, tzinfo=timezone.utc)
    return [
        record("commit", (base + timedelta(minutes=rng.randrange(60 * 24 * 90))).isoformat())
        for _ in range(n)
    ]


class TestEndToEndExample:
    def test_weekday_histogram_monday(self):
        views = transform(_example(), identity="octo")
        assert views.weekday_histogram[MONDAY].day == "Monday"
        assert views.weekday_histogram[MONDAY].count == 3

    def test_week_hour_grid_cells(self):
        grid = transform(_example()).week_hour_grid
        assert grid[MONDAY * 24 + 10].count == 2
        assert grid[MONDAY * 24 + 9].count == 1
        assert grid[MONDAY * 24 + 10].day == "Mon"

    def test_calendar_splits_on_exact_seven_day_gap(self):
        weeks = transform(_example()).calendar.weeks
        assert [[d.date for d in week] for week in weeks] == [["2024-01-01"], ["2024-01-08"]]

    def test_metadata(self):
        meta = transform(_example(), identity="octo").metadata
        assert meta.identity == "octo"
        assert meta.total == 3
        assert meta.start == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        assert meta.end == datetime(2024, 1, 8, 9, tzinfo=timezone.utc)
        assert meta.by_kind == {"commit": 2, "bookmark": 1}


class TestDayOfWeek:
    def test_sunday_is_zero(self):
        assert day_of_week(datetime(2024, 1, 7).date()) == 0

    def test_saturday_is_six(self):
        assert day_of_week(datetime(2024, 1, 6).date()) == 6


class TestWeekdayHistogram:
    def test_sums_to_input_length(self):
        records = _spread(500)
        assert sum(b.count for b in weekday_histogram(records)) == 500

    def test_seven_entries_sunday_first(self):
        names = [b.day for b in weekday_histogram([])]
        assert names[0] == "Sunday" and names[-1] == "Saturday" and len(names) == 7

    def test_uses_utc_day(self):
        # 23:30 on Sunday at -05:00 is Monday 04:30 UTC
        rec = record("commit", "2024-01-07T23:30:00-05:00")
        assert weekday_histogram([rec])[MONDAY].count == 1


class TestWeekHourGrid:
    def test_has_168_unique_cells(self):
        grid = week_hour_grid(_spread(50))
        assert len(grid) == 168
        assert len({(c.day_index, c.hour) for c in grid}) == 168

    def test_index_layout(self):
        grid = week_hour_grid([])
        for index, cell in enumerate(grid):
            assert index == cell.day_index * 24 + cell.hour

    def test_counts_sum_to_input_length(self):
        assert sum(c.count for c in week_hour_grid(_spread(321))) == 321


class TestCalendarView:
    def test_hour_vectors(self):
        days = calendar_view(_example()).days
        assert days["2024-01-01"][10] == 2
        assert days["2024-01-08"][9] == 1
        assert all(len(v) == 24 for v in days.values())

    def test_group_starts_at_earliest_day_not_calendar_week(self):
        # Wed 3rd .. Tue 9th stay together; Wed 10th opens a new group
        recs = [
            record("commit", "2024-01-03T12:00:00Z"),
            record("commit", "2024-01-09T12:00:00Z"),
            record("commit", "2024-01-10T12:00:00Z"),
        ]
        weeks = calendar_view(recs).weeks
        assert [[d.date for d in w] for w in weeks] == [
            ["2024-01-03", "2024-01-09"],
            ["2024-01-10"],
        ]

    def test_gap_measured_from_group_start(self):
        recs = [
            record("commit", "2024-01-01T00:00:00Z"),
            record("commit", "2024-01-05T00:00:00Z"),
            record("commit", "2024-01-09T00:00:00Z"),
            record("commit", "2024-01-12T00:00:00Z"),
            record("commit", "2024-01-16T00:00:00Z"),
        ]
        weeks = calendar_view(recs).weeks
        assert [[d.date for d in w] for w in weeks] == [
            ["2024-01-01", "2024-01-05"],
            ["2024-01-09", "2024-01-12"],
            ["2024-01-16"],
        ]

    def test_every_day_in_exactly_one_ordered_group(self):
        view = calendar_view(_spread(400))
        grouped = [d.date for week in view.weeks for d in week]
        assert grouped == sorted(view.days)
        starts = [week[0].date for week in view.weeks]
        assert starts == sorted(starts)

    def test_day_of_week_recorded(self):
        week = calendar_view(_example()).weeks[0]
        assert week[0].day_of_week == MONDAY


class TestSampleView:
    def test_capped_at_sample_size(self):
        assert len(transform(_spread(120)).sample) == SAMPLE_SIZE

    def test_keeps_all_when_fewer(self):
        assert len(transform(_example()).sample) == 3

    def test_deterministic_with_seeded_rng(self):
        records = _spread(80)
        a = transform(records, rng=random.Random(42)).sample
        b = transform(records, rng=random.Random(42)).sample
        assert a == b

    def test_sample_drawn_from_input(self):
        records = _spread(80)
        assert set(transform(records, rng=random.Random(1)).sample) <= set(records)


class TestPurity:
    def test_input_not_mutated(self):
        records = _spread(60)
        before = list(records)
        transform(records, rng=random.Random(3))
        assert records == before

    def test_empty_input(self):
        views = transform([], identity="ghost")
        assert views.sample == ()
        assert views.calendar.days == {} and views.calendar.weeks == []
        assert all(b.count == 0 for b in views.weekday_histogram)
        assert len(views.week_hour_grid) == 168
        assert views.metadata.start is None and views.metadata.end is None
        assert views.metadata.total == 0


class TestMetadataStats:
    def test_average_per_day(self):
        recs = [
            record("commit", "2024-01-01T00:00:00Z"),
            record("commit", "2024-01-02T00:00:00Z"),
            record("commit", "2024-01-03T00:00:00Z"),
        ]
        assert build_metadata("x", recs).average_per_day == 1.5

    def test_average_zero_for_single_instant(self):
        assert build_metadata("x", [record("commit", "2024-01-01T00:00:00Z")]).average_per_day == 0.0
