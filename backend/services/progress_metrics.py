"""
progress_metrics.py — Learning progress derivations
Pure reducers over already-fetched progress rows: streaks, consistency, velocity,
completion percentages and activity rollups.

All day bucketing uses the UTC calendar day. Naive datetimes (as read back from
SQLite) are treated as UTC.
"""

import math
from collections import OrderedDict
from datetime import datetime, timezone, timedelta
from typing import Iterable, Optional

from config import STREAK_MAX_DAYS, VELOCITY_WINDOW_DAYS, CONSISTENCY_WINDOW_DAYS

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
STREAK_MILESTONES = [7, 30, 100]
TIMEFRAME_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_key(dt: datetime) -> str:
    """ISO calendar day (YYYY-MM-DD) of a timestamp in UTC."""
    return to_utc(dt).date().isoformat()


def completed_days(timestamps: Iterable[Optional[datetime]]) -> set[str]:
    return {day_key(t) for t in timestamps if t is not None}


def timeframe_days(timeframe: str) -> int:
    return TIMEFRAME_DAYS.get(timeframe, 30)


# ------------------------------------------------------------------
# Streaks
# ------------------------------------------------------------------
def calculate_streak(
    timestamps: Iterable[Optional[datetime]],
    now: datetime | None = None,
    max_days: int = STREAK_MAX_DAYS,
) -> int:
    """Consecutive days with a completion, walking back from today. No grace day."""
    days = completed_days(timestamps)
    if not days:
        return 0

    today = to_utc(now or utcnow()).date()
    streak = 0
    for i in range(max_days):
        if (today - timedelta(days=i)).isoformat() in days:
            streak += 1
        else:
            break
    return streak


def streak_badge(streak: int) -> str | None:
    if streak <= 0:
        return None
    if streak < 7:
        return "Hot"
    if streak < 30:
        return "On Fire"
    return "Legendary"


def next_streak_milestone(streak: int) -> int | None:
    for target in STREAK_MILESTONES:
        if streak < target:
            return target
    return None


def streak_summary(streak: int) -> dict:
    target = next_streak_milestone(streak)
    return {
        "streak": streak,
        "badge": streak_badge(streak),
        "next_milestone": target,
        "progress_to_next": round(streak / target * 100, 1) if target else 100.0,
    }


# ------------------------------------------------------------------
# Derived metrics
# ------------------------------------------------------------------
def learning_velocity(
    timestamps: Iterable[Optional[datetime]],
    now: datetime | None = None,
    window_days: int = VELOCITY_WINDOW_DAYS,
) -> int:
    """Completions inside [now - window, now]."""
    end = to_utc(now or utcnow())
    start = end - timedelta(days=window_days)
    return sum(1 for t in timestamps if t is not None and start <= to_utc(t) <= end)


def days_since(start: Optional[datetime], now: datetime | None = None) -> int:
    """Whole days (rounded up) since `start`; 1 when there is no start."""
    if start is None:
        return 1
    elapsed = to_utc(now or utcnow()) - to_utc(start)
    return math.ceil(elapsed.total_seconds() / 86400)


def consistency_score(
    timestamps: Iterable[Optional[datetime]],
    first_enrollment_at: Optional[datetime],
    now: datetime | None = None,
    max_window: int = CONSISTENCY_WINDOW_DAYS,
) -> int:
    """Share of the last min(days_since_start, 30) days with at least one completion."""
    now = to_utc(now or utcnow())
    window = min(days_since(first_enrollment_at, now), max_window)
    if window <= 0:
        return 0

    days = completed_days(timestamps)
    today = now.date()
    in_window = {(today - timedelta(days=i)).isoformat() for i in range(window)}
    active = len(days & in_window)
    return max(0, min(100, round_half_up(active / window * 100)))


def consistency_label(score: int) -> str:
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    return "Needs Improvement"


def total_time_spent(durations_ms: Iterable[Optional[int]]) -> int:
    return sum(d for d in durations_ms if d)


def progress_time_ms(progress) -> int:
    """Recorded time on a progress row, falling back to the lesson's nominal duration."""
    if progress.time_spent_ms:
        return progress.time_spent_ms
    lesson = getattr(progress, "lesson", None)
    if lesson is not None and lesson.duration_min:
        return lesson.duration_min * 60_000
    return 0


def progress_pct(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, round_half_up(completed / total * 100)))


def retention_rate(quiz_passes: Iterable[Optional[bool]], progress: Optional[list] = None) -> int:
    """
    Share of passed quiz submissions. Without quizzes, falls back to the share of
    progress rows that are completed; 0 when there is nothing to measure.
    """
    passes = [p for p in quiz_passes if p is not None]
    if passes:
        return round_half_up(sum(1 for p in passes if p) / len(passes) * 100)
    if progress:
        done = sum(1 for p in progress if p.completed_at is not None)
        return round_half_up(done / len(progress) * 100)
    return 0


def enhanced_metrics(
    progress: list,
    first_enrollment_at: Optional[datetime],
    quiz_passes: Iterable[Optional[bool]] = (),
    now: datetime | None = None,
) -> dict:
    """
    Dashboard metric bundle over LessonProgress rows.
    Rows without completed_at are ignored for day-based metrics.
    """
    now = to_utc(now or utcnow())
    stamps = [p.completed_at for p in progress if p.completed_at is not None]
    return {
        "learning_velocity": learning_velocity(stamps, now),
        "total_time_spent": total_time_spent(progress_time_ms(p) for p in progress),
        "consistency_score": consistency_score(stamps, first_enrollment_at, now),
        "retention_rate": retention_rate(quiz_passes, progress),
        "total_days": len(completed_days(stamps)),
    }


# ------------------------------------------------------------------
# Activity rollups
# ------------------------------------------------------------------
def activity_by_date(progress: list) -> list[dict]:
    """Per-day lesson counts and time, ascending by date."""
    buckets: dict[str, dict] = {}
    for p in progress:
        if p.completed_at is None:
            continue
        key = day_key(p.completed_at)
        bucket = buckets.setdefault(key, {"date": key, "lessons_completed": 0, "time_spent": 0})
        bucket["lessons_completed"] += 1
        bucket["time_spent"] += p.time_spent_ms or 0
    return [buckets[k] for k in sorted(buckets)]


def weekly_pattern(progress: list) -> list[dict]:
    pattern = OrderedDict((day, {"lessons_completed": 0, "time_spent": 0}) for day in DAY_NAMES)
    for p in progress:
        if p.completed_at is None:
            continue
        # isoweekday: Monday=1 .. Sunday=7
        name = DAY_NAMES[to_utc(p.completed_at).isoweekday() % 7]
        pattern[name]["lessons_completed"] += 1
        pattern[name]["time_spent"] += p.time_spent_ms or 0
    return [{"day": day, **data} for day, data in pattern.items()]


def velocity_trend(timestamps: Iterable[Optional[datetime]], now: datetime | None = None) -> dict:
    now = to_utc(now or utcnow())
    stamps = [to_utc(t) for t in timestamps if t is not None]

    velocities = []
    for label, days in (("1 week", 7), ("2 weeks", 14), ("4 weeks", 28)):
        count = learning_velocity(stamps, now, days)
        velocities.append({
            "period": label,
            "lessons_completed": count,
            "lessons_per_week": round_half_up(count / days * 7),
        })

    one_week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    current_week = sum(1 for t in stamps if one_week_ago <= t <= now)
    previous_week = sum(1 for t in stamps if two_weeks_ago <= t < one_week_ago)

    if current_week > previous_week:
        trend = "increasing"
    elif current_week < previous_week:
        trend = "decreasing"
    else:
        trend = "stable"

    return {
        "velocities": velocities,
        "trend": trend,
        "current_week": current_week,
        "previous_week": previous_week,
    }
