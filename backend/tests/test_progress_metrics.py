from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from services import progress_metrics as pm

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _days_ago(n, hour=9):
    return (NOW - timedelta(days=n)).replace(hour=hour)


def _row(completed_at, time_spent_ms=0, duration_min=None):
    lesson = SimpleNamespace(duration_min=duration_min)
    return SimpleNamespace(completed_at=completed_at, time_spent_ms=time_spent_ms, lesson=lesson)


def test_round_half_up():
    assert pm.round_half_up(2.5) == 3
    assert pm.round_half_up(0.5) == 1
    assert pm.round_half_up(2.4999) == 2


def test_naive_timestamps_are_utc():
    naive = datetime(2026, 3, 10, 23, 30)
    assert pm.day_key(naive) == "2026-03-10"
    shifted = datetime(2026, 3, 10, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert pm.day_key(shifted) == "2026-03-11"


def test_streak_three_consecutive_days():
    stamps = [_days_ago(0), _days_ago(1), _days_ago(2)]
    assert pm.calculate_streak(stamps, NOW) == 3


def test_streak_multiple_completions_same_day_count_once():
    stamps = [_days_ago(0, 8), _days_ago(0, 10), _days_ago(1)]
    assert pm.calculate_streak(stamps, NOW) == 2


def test_streak_no_activity_today_is_zero():
    stamps = [_days_ago(1), _days_ago(2)]
    assert pm.calculate_streak(stamps, NOW) == 0


def test_streak_gap_breaks_run():
    stamps = [_days_ago(0), _days_ago(1), _days_ago(3)]
    assert pm.calculate_streak(stamps, NOW) == 2


def test_streak_empty_and_none():
    assert pm.calculate_streak([], NOW) == 0
    assert pm.calculate_streak([None, None], NOW) == 0


def test_streak_capped_at_max_days():
    stamps = [_days_ago(i) for i in range(45)]
    assert pm.calculate_streak(stamps, NOW) == 30


def test_streak_midnight_boundary():
    today_midnight = datetime(2026, 3, 10, 0, 0, 0, tzinfo=timezone.utc)
    yesterday_last_second = datetime(2026, 3, 9, 23, 59, 59, tzinfo=timezone.utc)
    assert pm.calculate_streak([today_midnight, yesterday_last_second], NOW) == 2


def test_streak_last_second_two_days_ago_does_not_bridge_gap():
    two_days_ago_last_second = datetime(2026, 3, 8, 23, 59, 59, tzinfo=timezone.utc)
    today_midnight = datetime(2026, 3, 10, 0, 0, 0, tzinfo=timezone.utc)
    assert pm.calculate_streak([today_midnight, two_days_ago_last_second], NOW) == 1


def test_streak_summary_badges_and_milestones():
    assert pm.streak_summary(0)["badge"] is None
    assert pm.streak_summary(3) == {"streak": 3, "badge": "Hot", "next_milestone": 7, "progress_to_next": 42.9}
    assert pm.streak_summary(7)["badge"] == "On Fire"
    assert pm.streak_summary(7)["next_milestone"] == 30
    legendary = pm.streak_summary(30)
    assert legendary["badge"] == "Legendary"
    assert legendary["next_milestone"] == 100
    assert pm.next_streak_milestone(100) is None


def test_velocity_counts_last_seven_days_inclusive():
    stamps = [NOW, NOW - timedelta(days=7), NOW - timedelta(days=7, seconds=1), NOW - timedelta(days=3)]
    assert pm.learning_velocity(stamps, NOW) == 3


def test_velocity_excludes_future_and_stale():
    assert pm.learning_velocity([NOW + timedelta(hours=1)], NOW) == 0
    assert pm.learning_velocity([NOW - timedelta(days=8)], NOW) == 0


def test_consistency_new_learner_window_is_one_day():
    first = NOW - timedelta(hours=2)
    assert pm.consistency_score([NOW - timedelta(hours=1)], first, NOW) == 100


def test_consistency_window_capped_at_thirty():
    first = NOW - timedelta(days=200)
    stamps = [_days_ago(i) for i in range(15)]
    assert pm.consistency_score(stamps, first, NOW) == 50


def test_consistency_ignores_activity_outside_window():
    first = NOW - timedelta(days=10)
    stamps = [_days_ago(i) for i in range(40)]
    assert pm.consistency_score(stamps, first, NOW) == 100


def test_consistency_without_enrollment_uses_single_day():
    assert pm.consistency_score([], None, NOW) == 0
    assert pm.consistency_score([_days_ago(0)], None, NOW) == 100


def test_consistency_labels():
    assert pm.consistency_label(80) == "Excellent"
    assert pm.consistency_label(60) == "Good"
    assert pm.consistency_label(59) == "Needs Improvement"


def test_progress_pct():
    assert pm.progress_pct(4, 10) == 40
    assert pm.progress_pct(1, 3) == 33
    assert pm.progress_pct(2, 3) == 67
    assert pm.progress_pct(0, 0) == 0
    assert pm.progress_pct(12, 10) == 100


def test_retention_rate_is_quiz_pass_share():
    assert pm.retention_rate([]) == 0
    assert pm.retention_rate([True, False]) == 50
    assert pm.retention_rate([True, True, False]) == 67


def test_retention_rate_falls_back_to_completed_rows():
    rows = [_row(_days_ago(0)), _row(None), _row(_days_ago(1)), _row(_days_ago(2))]
    assert pm.retention_rate([], rows) == 75
    # quiz results win over the fallback
    assert pm.retention_rate([False], rows) == 0


def test_enhanced_metrics_bundle():
    rows = [
        _row(_days_ago(0), 60_000),
        _row(_days_ago(1), 0, duration_min=5),
        _row(_days_ago(20), 120_000),
        _row(None, 999),
    ]
    metrics = pm.enhanced_metrics(rows, NOW - timedelta(days=9, hours=12), [True, False], NOW)
    assert metrics["learning_velocity"] == 2
    # 60s + 5min fallback + 120s + 999ms on the unfinished row
    assert metrics["total_time_spent"] == 60_000 + 300_000 + 120_000 + 999
    assert metrics["consistency_score"] == 20
    assert metrics["retention_rate"] == 50
    assert metrics["total_days"] == 3


def test_enhanced_metrics_empty():
    metrics = pm.enhanced_metrics([], None, [], NOW)
    assert metrics == {
        "learning_velocity": 0,
        "total_time_spent": 0,
        "consistency_score": 0,
        "retention_rate": 0,
        "total_days": 0,
    }


def test_activity_by_date_sorted_ascending():
    rows = [_row(_days_ago(0), 100), _row(_days_ago(2), 50), _row(_days_ago(0, 11), 25)]
    activity = pm.activity_by_date(rows)
    assert [a["date"] for a in activity] == ["2026-03-08", "2026-03-10"]
    assert activity[1] == {"date": "2026-03-10", "lessons_completed": 2, "time_spent": 125}


def test_weekly_pattern_starts_on_sunday():
    # 2026-03-08 is a Sunday
    rows = [_row(datetime(2026, 3, 8, 10, tzinfo=timezone.utc), 10)]
    pattern = pm.weekly_pattern(rows)
    assert [p["day"] for p in pattern][0] == "Sunday"
    assert pattern[0]["lessons_completed"] == 1
    assert sum(p["lessons_completed"] for p in pattern) == 1


def test_velocity_trend_direction():
    stamps = [_days_ago(1), _days_ago(2), _days_ago(9)]
    trend = pm.velocity_trend(stamps, NOW)
    assert trend["current_week"] == 2
    assert trend["previous_week"] == 1
    assert trend["trend"] == "increasing"
    assert [v["period"] for v in trend["velocities"]] == ["1 week", "2 weeks", "4 weeks"]
    assert pm.velocity_trend([], NOW)["trend"] == "stable"


def test_timeframe_days_defaults_to_thirty():
    assert pm.timeframe_days("7d") == 7
    assert pm.timeframe_days("1y") == 365
    assert pm.timeframe_days("bogus") == 30
