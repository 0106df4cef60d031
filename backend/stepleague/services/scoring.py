"""
Leaderboard scoring: per-day dedup, per-member aggregation, ranking,
period-over-period improvement and achievement badges.

Everything here is pure. Callers pass the complete row set for the window
and get a freshly computed leaderboard back; nothing is cached between calls.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Literal, Mapping, Sequence

from stepleague.services.periods import calculate_streak

SortBy = Literal["steps", "improvement", "average", "streak"]

MOST_IMPROVED_SLOTS = 3
STREAK_BADGES: tuple[tuple[int, str], ...] = ((30, "streak_30"), (7, "streak_7"), (3, "streak_3"))
LIFETIME_BADGES: tuple[tuple[int, str], ...] = (
    (1_000_000, "million_club"),
    (500_000, "500k_club"),
    (100_000, "100k_club"),
)


@dataclass(frozen=True)
class ScoredRow:
    user_id: str
    for_date: date
    steps: int
    verified: bool | None = None


@dataclass
class UserStats:
    user_id: str
    total_steps: int = 0
    days_submitted: int = 0
    verified_days: int = 0
    unverified_days: int = 0
    steps_by_date: dict[date, int] = field(default_factory=dict)

    @property
    def average_per_day(self) -> int:
        return round(self.total_steps / self.days_submitted) if self.days_submitted > 0 else 0

    @property
    def submission_dates(self) -> list[date]:
        return list(self.steps_by_date)


@dataclass(frozen=True)
class UserRecordSnapshot:
    current_streak: int = 0
    lifetime_steps: int = 0


@dataclass
class LeaderboardEntry:
    user_id: str
    period_a: UserStats
    period_b: UserStats | None = None
    improvement_pct: float | None = None
    common_days_steps_a: int | None = None
    common_days_steps_b: int | None = None
    period_streak: int = 0
    current_streak: int = 0
    lifetime_steps: int = 0
    rank: int = 0
    badges: list[str] = field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return self.period_a.total_steps

    def add_badge(self, badge: str) -> None:
        if badge not in self.badges:
            self.badges.append(badge)


def _field(row: Any, name: str):
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def dedupe_submissions(rows: Iterable[Any]) -> list[Any]:
    """
    Keep one row per (user_id, for_date): the one with the most steps.

    On a steps tie a verified row replaces an unverified one. Output order follows
    the first appearance of each key, so repeated calls on the same input agree.
    """
    best: dict[tuple[Any, Any], Any] = {}
    for row in rows:
        key = (_field(row, "user_id"), _field(row, "for_date"))
        current = best.get(key)
        if current is None:
            best[key] = row
            continue
        steps, current_steps = _field(row, "steps") or 0, _field(current, "steps") or 0
        if steps > current_steps:
            best[key] = row
        elif steps == current_steps and _field(row, "verified") and not _field(current, "verified"):
            best[key] = row
    return list(best.values())


def aggregate(rows: Iterable[Any]) -> dict[str, UserStats]:
    """Per-user totals over deduplicated rows, keyed in first-seen order."""
    stats: dict[str, UserStats] = {}
    for row in dedupe_submissions(rows):
        uid = str(_field(row, "user_id"))
        s = stats.setdefault(uid, UserStats(user_id=uid))
        steps = int(_field(row, "steps") or 0)
        d = _field(row, "for_date")
        s.total_steps += steps
        s.days_submitted += 1
        s.steps_by_date[d] = s.steps_by_date.get(d, 0) + steps
        if _field(row, "verified"):
            s.verified_days += 1
        else:
            s.unverified_days += 1
    return stats


def improvement_pct(current: int | float, baseline: int | float | None) -> float | None:
    if not baseline or baseline <= 0:
        return None
    return (current - baseline) / baseline * 100


def _sort_value(entry: LeaderboardEntry, sort_by: str) -> float:
    if sort_by == "improvement":
        return entry.improvement_pct if entry.improvement_pct is not None else -math.inf
    if sort_by == "average":
        return entry.period_a.average_per_day
    if sort_by == "streak":
        return entry.period_streak
    return entry.period_a.total_steps


def rank_entries(entries: Sequence[LeaderboardEntry], sort_by: str = "steps") -> list[LeaderboardEntry]:
    """
    Sort descending by the active key and assign ranks 1..N.

    Ties keep their input order and still get distinct sequential ranks.
    """
    ranked = sorted(entries, key=lambda e: _sort_value(e, sort_by), reverse=True)
    for i, e in enumerate(ranked, start=1):
        e.rank = i
    return ranked


def _tier(value: int, tiers: tuple[tuple[int, str], ...]) -> str | None:
    for threshold, badge in tiers:
        if value >= threshold:
            return badge
    return None


def assign_badges(ranked: Sequence[LeaderboardEntry]) -> None:
    """Annotate an already-ranked list in place. Rules only ever add badges."""
    if not ranked:
        return

    ranked[0].add_badge("leader")

    improvers = sorted(
        (e for e in ranked if e.improvement_pct is not None and e.improvement_pct > 0),
        key=lambda e: e.improvement_pct,
        reverse=True,
    )
    for e in improvers[:MOST_IMPROVED_SLOTS]:
        e.add_badge("most_improved")

    for e in ranked:
        streak_badge = _tier(e.current_streak, STREAK_BADGES)
        if streak_badge:
            e.add_badge(streak_badge)
        lifetime_badge = _tier(e.lifetime_steps, LIFETIME_BADGES)
        if lifetime_badge:
            e.add_badge(lifetime_badge)


class LeaderboardScorer:
    """Turns raw submission rows for one or two windows into a ranked leaderboard."""

    def __init__(self, today: date | None = None):
        self.today = today

    def score(
        self,
        rows_a: Iterable[Any],
        rows_b: Iterable[Any] | None = None,
        records: Mapping[str, UserRecordSnapshot] | None = None,
        history: Mapping[str, Iterable[date]] | None = None,
        sort_by: str = "steps",
    ) -> list[LeaderboardEntry]:
        """
        rows_a: rows inside the scored window (period A).
        rows_b: rows inside the comparison window (period B), or None.
        records: authoritative streak/lifetime totals per user.
        history: every submission date per user, used for the period streak
            and as the streak fallback when a user has no record.
        """
        stats_a = aggregate(rows_a)
        stats_b = aggregate(rows_b) if rows_b is not None else None
        records = records or {}
        history = history or {}

        entries: list[LeaderboardEntry] = []
        for uid, a in stats_a.items():
            b = stats_b.get(uid) if stats_b is not None else None
            entry = LeaderboardEntry(user_id=uid, period_a=a, period_b=b)
            if b is not None:
                entry.improvement_pct = improvement_pct(a.total_steps, b.total_steps)
                common = [d for d in a.steps_by_date if d in b.steps_by_date]
                if common:
                    entry.common_days_steps_a = sum(a.steps_by_date[d] for d in common)
                    entry.common_days_steps_b = sum(b.steps_by_date[d] for d in common)

            entry.period_streak = calculate_streak(history.get(uid, a.submission_dates), today=self.today)
            record = records.get(uid)
            entry.current_streak = record.current_streak if record is not None else entry.period_streak
            entry.lifetime_steps = record.lifetime_steps if record is not None else 0
            entries.append(entry)

        ranked = rank_entries(entries, sort_by)
        assign_badges(ranked)
        return ranked
