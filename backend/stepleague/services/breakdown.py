from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Literal

from stepleague.services.periods import DateRange

GroupBy = Literal["day", "3days", "5days", "week", "month"]
BreakdownSort = Literal["total", "average", "consistency", "name"]

# "month" has no window size of its own and renders day by day
GROUP_SIZES: dict[str, int] = {"day": 1, "3days": 3, "5days": 5, "week": 7}


@dataclass(frozen=True)
class DayData:
    steps: int
    verified: bool


@dataclass
class MemberBreakdown:
    user_id: str
    nickname: str | None = None
    display_name: str | None = None
    total_steps: int = 0
    days_submitted: int = 0
    avg_per_day: int = 0
    consistency_pct: int = 0
    days: dict[str, DayData | None] = field(default_factory=dict)


def group_size(group_by: str) -> int:
    return GROUP_SIZES.get(group_by, 1)


def group_dates(dates: list[date], group_by: str) -> list[list[date]]:
    """Split consecutive dates into fixed windows from the first date; the last may be short."""
    size = group_size(group_by)
    return [dates[i:i + size] for i in range(0, len(dates), size)]


def group_key(window: list[date]) -> str:
    return f"{window[0].isoformat()}~{window[-1].isoformat()}"


def aggregate_window(days: dict[str, DayData | None], window: list[date]) -> DayData | None:
    """Sum a window; verified only if every day with data is verified, None if no day has data."""
    total = 0
    has_data = False
    all_verified = True
    for d in window:
        day = days.get(d.isoformat())
        if day is None:
            continue
        has_data = True
        total += day.steps
        if not day.verified:
            all_verified = False
    return DayData(steps=total, verified=all_verified) if has_data else None


def consistency_pct(days_submitted: int, total_days: int) -> int:
    if total_days <= 0:
        return 0
    return max(0, min(100, round(days_submitted / total_days * 100)))


def build_breakdown(
    rng: DateRange,
    members: Iterable[tuple[str, str | None, str | None]],
    rows: Iterable[Any],
    group_by: str = "day",
    sort_by: str = "total",
) -> tuple[list[str], list[MemberBreakdown]]:
    """
    Build the per-member calendar for a league over `rng`.

    members: (user_id, nickname, display_name) for every league member.
    rows: submissions with user_id, for_date, steps, verified.
    Returns (column keys, members sorted by `sort_by`).
    Raises InvalidDateRange when the range ends before it starts.
    """
    rng.validate()
    all_dates = rng.dates()
    total_days = rng.days

    by_user: dict[str, MemberBreakdown] = {}
    for uid, nickname, display_name in members:
        by_user[str(uid)] = MemberBreakdown(
            user_id=str(uid),
            nickname=nickname,
            display_name=display_name,
            days={d.isoformat(): None for d in all_dates},
        )

    for row in rows:
        m = by_user.get(str(row.user_id))
        key = row.for_date.isoformat()
        if m is None or key not in m.days:
            continue
        previous = m.days[key]
        if previous is not None:
            # one row per day; a stray duplicate keeps the larger count
            if (row.steps or 0) <= previous.steps:
                continue
            m.total_steps -= previous.steps
            m.days_submitted -= 1
        m.days[key] = DayData(steps=row.steps or 0, verified=bool(row.verified))
        m.total_steps += row.steps or 0
        m.days_submitted += 1

    result = list(by_user.values())
    for m in result:
        m.avg_per_day = round(m.total_steps / m.days_submitted) if m.days_submitted > 0 else 0
        m.consistency_pct = consistency_pct(m.days_submitted, total_days)

    if sort_by == "average":
        result.sort(key=lambda m: m.avg_per_day, reverse=True)
    elif sort_by == "consistency":
        result.sort(key=lambda m: m.consistency_pct, reverse=True)
    elif sort_by == "name":
        result.sort(key=lambda m: (m.nickname or m.display_name or "").casefold())
    else:
        result.sort(key=lambda m: m.total_steps, reverse=True)

    size = group_size(group_by)
    if size == 1:
        return [d.isoformat() for d in all_dates], result

    windows = group_dates(all_dates, group_by)
    for m in result:
        m.days = {group_key(w): aggregate_window(m.days, w) for w in windows}
    return [group_key(w) for w in windows], result
