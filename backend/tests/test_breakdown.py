from __future__ import annotations
from datetime import date, timedelta
from types import SimpleNamespace
import pytest
from stepleague.services.breakdown import (
    DayData, aggregate_window, build_breakdown, consistency_pct, group_dates,
)
from stepleague.services.periods import DateRange, InvalidDateRange

START = date(2026, 1, 1)
RNG = DateRange(START, START + timedelta(days=9))
MEMBERS = [("u1", "Ann", "Ann A"), ("u2", None, "Bob B")]


def _row(uid, offset, steps, verified=False):
    return SimpleNamespace(user_id=uid, for_date=START + timedelta(days=offset), steps=steps, verified=verified)


def test_consistency_bounds():
    for total in range(1, 40):
        for submitted in range(0, total + 1):
            assert 0 <= consistency_pct(submitted, total) <= 100
    assert consistency_pct(5, 0) == 0
    assert consistency_pct(3, 7) == 43


def test_group_dates_last_window_shorter():
    windows = group_dates(RNG.dates(), "3days")
    assert [len(w) for w in windows] == [3, 3, 3, 1]
    assert [len(w) for w in group_dates(RNG.dates(), "week")] == [7, 3]


def test_aggregate_window_rules():
    days = {
        "2026-01-01": DayData(100, True),
        "2026-01-02": None,
        "2026-01-03": DayData(50, False),
    }
    window = [START, START + timedelta(days=1), START + timedelta(days=2)]
    assert aggregate_window(days, window) == DayData(150, False)
    assert aggregate_window(days, window[:2]) == DayData(100, True)
    assert aggregate_window(days, [START + timedelta(days=1)]) is None


def test_daily_breakdown():
    rows = [_row("u1", 0, 1000, True), _row("u1", 1, 2000), _row("u2", 0, 9000)]
    dates, members = build_breakdown(RNG, MEMBERS, rows)
    assert len(dates) == 10 and dates[0] == "2026-01-01"
    assert [m.user_id for m in members] == ["u2", "u1"]
    ann = members[1]
    assert ann.total_steps == 3000
    assert ann.days_submitted == 2
    assert ann.avg_per_day == 1500
    assert ann.consistency_pct == 20
    assert ann.days["2026-01-01"] == DayData(1000, True)
    assert ann.days["2026-01-03"] is None


def test_grouped_breakdown_keys_and_sums():
    rows = [_row("u1", 0, 1000, True), _row("u1", 2, 500, True), _row("u1", 3, 700)]
    dates, members = build_breakdown(RNG, MEMBERS, rows, group_by="3days", sort_by="name")
    assert dates == ["2026-01-01~2026-01-03", "2026-01-04~2026-01-06", "2026-01-07~2026-01-09", "2026-01-10~2026-01-10"]
    ann = next(m for m in members if m.user_id == "u1")
    assert ann.days["2026-01-01~2026-01-03"] == DayData(1500, True)
    assert ann.days["2026-01-04~2026-01-06"] == DayData(700, False)
    assert ann.days["2026-01-07~2026-01-09"] is None


def test_month_grouping_is_daily():
    dates, _ = build_breakdown(RNG, MEMBERS, [], group_by="month")
    assert dates == [d.isoformat() for d in RNG.dates()]


def test_duplicate_day_keeps_larger():
    rows = [_row("u1", 0, 400), _row("u1", 0, 900)]
    _, members = build_breakdown(RNG, MEMBERS, rows)
    ann = next(m for m in members if m.user_id == "u1")
    assert ann.total_steps == 900 and ann.days_submitted == 1


def test_rows_outside_range_or_league_ignored():
    rows = [_row("u1", 30, 400), _row("stranger", 0, 900)]
    _, members = build_breakdown(RNG, MEMBERS, rows)
    assert all(m.total_steps == 0 for m in members)


def test_sort_by_name_uses_nickname_then_display_name():
    _, members = build_breakdown(RNG, [("u1", "zed", None), ("u2", None, "amy")], [], sort_by="name")
    assert [m.user_id for m in members] == ["u2", "u1"]


def test_invalid_range():
    with pytest.raises(InvalidDateRange):
        build_breakdown(DateRange(START, START - timedelta(days=1)), MEMBERS, [])
