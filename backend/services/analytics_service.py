"""
analytics_service.py — Learning analytics over a timeframe
Overview, per-track and detailed breakdowns (daily activity, weekly patterns,
velocity trend) built from the learner's progress rows.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from exceptions import NotFoundError
from models.track import Track
from services import progress_metrics as pm
from services.learning_service import LearningService

logger = logging.getLogger(__name__)

ANALYTICS_TYPES = ("overview", "track", "detailed")


def _within(progress: list, start: datetime) -> list:
    return [p for p in progress if p.completed_at is not None and pm.to_utc(p.completed_at) >= start]


class AnalyticsService:

    @staticmethod
    def get_overview(db: Session, user_id: int, timeframe: str = "30d", now: datetime | None = None) -> dict:
        now = pm.to_utc(now or pm.utcnow())
        start = now - timedelta(days=pm.timeframe_days(timeframe))

        enrollments = LearningService.get_enrollments(db, user_id)
        progress = LearningService.get_progress(db, user_id)
        certificates = LearningService.get_certificates(db, user_id)
        passes = LearningService.get_quiz_passes(db, user_id)
        in_range = _within(progress, start)

        recent = sorted(in_range, key=lambda p: pm.to_utc(p.completed_at), reverse=True)[:10]
        top = sorted(enrollments, key=lambda e: e.progress_pct or 0, reverse=True)[:5]

        return {
            "overview": {
                "total_enrollments": len(enrollments),
                "completed_tracks": sum(1 for e in enrollments if e.completed_at is not None),
                "total_lessons_completed": sum(1 for p in progress if p.completed_at is not None),
                "total_time_spent": pm.total_time_spent(pm.progress_time_ms(p) for p in progress),
                "certificates": len(certificates),
                "streak": pm.calculate_streak([p.completed_at for p in progress], now),
                "retention_rate": pm.retention_rate(passes, progress),
            },
            "recent_activity": [{
                "lesson_id": p.lesson_id,
                "lesson_title": p.lesson.title if p.lesson else None,
                "track_title": p.lesson.track.title if p.lesson and p.lesson.track else None,
                "track_slug": p.lesson.track.slug if p.lesson and p.lesson.track else None,
                "completed_at": p.completed_at,
            } for p in recent],
            "progress_over_time": pm.activity_by_date(in_range),
            "top_tracks": [{
                "track_id": e.track_id,
                "track_title": e.track.title if e.track else None,
                "track_slug": e.track.slug if e.track else None,
                "progress_pct": e.progress_pct or 0,
                "started_at": e.started_at,
                "completed_at": e.completed_at,
            } for e in top],
        }

    @staticmethod
    def get_track(db: Session, user_id: int, track_id: int, timeframe: str = "30d", now: datetime | None = None) -> dict:
        now = pm.to_utc(now or pm.utcnow())
        track = db.query(Track).filter_by(id=track_id).first()
        if not track:
            raise NotFoundError("Track", track_id)

        start = now - timedelta(days=pm.timeframe_days(timeframe))
        summary = LearningService.get_track_progress(db, user_id, track_id, now) or {
            "progress_pct": 0, "completed_lessons": 0, "total_lessons": 0,
            "streak": 0, "time_spent_ms": 0, "enrollment": None,
        }
        progress = _within(LearningService.get_progress(db, user_id, track_id), start)
        progress.sort(key=lambda p: pm.to_utc(p.completed_at))

        return {
            "track": {"id": track.id, "title": track.title, "slug": track.slug},
            "progress": summary,
            "timeline": [{
                "date": p.completed_at,
                "lesson_title": p.lesson.title if p.lesson else None,
                "lesson_slug": p.lesson.slug if p.lesson else None,
                "time_spent": p.time_spent_ms or 0,
            } for p in progress],
        }

    @staticmethod
    def get_detailed(db: Session, user_id: int, timeframe: str = "30d", now: datetime | None = None) -> dict:
        now = pm.to_utc(now or pm.utcnow())
        start = now - timedelta(days=pm.timeframe_days(timeframe))
        progress = LearningService.get_progress(db, user_id)
        in_range = _within(progress, start)

        return {
            "daily_activity": pm.activity_by_date(in_range),
            "weekly_patterns": pm.weekly_pattern(in_range),
            "learning_velocity": pm.velocity_trend([p.completed_at for p in progress], now),
        }

    @staticmethod
    def get(db: Session, user_id: int, kind: str, timeframe: str = "30d",
            track_id: int | None = None, now: datetime | None = None) -> dict:
        if kind == "overview":
            return AnalyticsService.get_overview(db, user_id, timeframe, now)
        if kind == "track":
            if track_id is None:
                raise ValueError("track_id is required for track analytics")
            return AnalyticsService.get_track(db, user_id, track_id, timeframe, now)
        if kind == "detailed":
            return AnalyticsService.get_detailed(db, user_id, timeframe, now)
        raise ValueError(f"Invalid analytics type: {kind}")
