"""
dashboard_service.py — Learning Hub dashboard bundle
Fetches each collection independently, derives metrics, and shapes the view
models the dashboard cards consume. A failed sub-fetch shows up as an empty
section instead of failing the whole bundle.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from services import progress_metrics as pm
from services.learning_service import LearningService
from services.recommendation_service import RecommendationService

logger = logging.getLogger(__name__)


def derived_progress(enrollment, counts: dict) -> tuple[int, int, int]:
    """(pct, completed, total) from lesson counts; the cached pct only when counts are missing."""
    if enrollment.track_id in counts:
        completed, total = counts[enrollment.track_id]
        return pm.progress_pct(completed, total), completed, total
    return enrollment.progress_pct or 0, 0, 0


def build_stats(
    enrollments: list,
    progress: list,
    certificates: list,
    counts: dict | None = None,
    now: datetime | None = None,
) -> dict:
    counts = counts or {}
    stamps = [p.completed_at for p in progress]
    return {
        "total_enrollments": len(enrollments),
        "completed_tracks": sum(1 for e in enrollments if derived_progress(e, counts)[0] == 100),
        "total_lessons_completed": sum(1 for p in progress if p.completed_at is not None),
        "total_certificates": len(certificates),
        "streak": pm.calculate_streak(stamps, now),
    }


def build_course_cards(enrollments: list, counts: dict | None = None) -> list[dict]:
    counts = counts or {}
    cards = []
    for e in enrollments:
        track = e.track
        pct, completed, total = derived_progress(e, counts)
        cards.append({
            "id": e.track_id,
            "slug": track.slug if track else None,
            "title": track.title if track else None,
            "summary": track.summary if track else None,
            "cover_url": track.cover_url if track else None,
            "progress_pct": pct,
            "started_at": e.started_at,
            "completed_at": e.completed_at,
            "total_lessons": total,
            "completed_lessons": completed,
        })
    return cards


def build_timeline(progress: list, limit: int = 10) -> list[dict]:
    """Most recent completions first."""
    done = [p for p in progress if p.completed_at is not None]
    done.sort(key=lambda p: pm.to_utc(p.completed_at), reverse=True)
    timeline = []
    for p in done[:limit]:
        lesson = p.lesson
        timeline.append({
            "lesson_id": p.lesson_id,
            "lesson_title": lesson.title if lesson else None,
            "track_id": lesson.track_id if lesson else None,
            "track_title": lesson.track.title if lesson and lesson.track else None,
            "completed_at": p.completed_at,
            "time_spent": p.time_spent_ms or 0,
        })
    return timeline


def build_certificate_cards(certificates: list) -> list[dict]:
    return [{
        "id": c.id,
        "code": c.code,
        "track_id": c.track_id,
        "track_title": c.track.title if c.track else None,
        "track_slug": c.track.slug if c.track else None,
        "issued_at": c.issued_at,
    } for c in certificates]


class DashboardService:
    @staticmethod
    def get_metrics(db: Session, user_id: int, now: datetime | None = None) -> dict:
        progress = LearningService.get_progress(db, user_id)
        first_started = LearningService.get_first_enrollment_at(db, user_id)
        passes = LearningService.get_quiz_passes(db, user_id)
        metrics = pm.enhanced_metrics(progress, first_started, passes, now)
        metrics["consistency_label"] = pm.consistency_label(metrics["consistency_score"])
        return metrics

    @staticmethod
    def get_streak(db: Session, user_id: int, now: datetime | None = None) -> dict:
        progress = LearningService.get_progress(db, user_id)
        streak = pm.calculate_streak([p.completed_at for p in progress], now)
        return pm.streak_summary(streak)

    @staticmethod
    def get_recommendations(db: Session, user_id: int, now: datetime | None = None) -> list[dict]:
        tracks = LearningService.get_published_tracks(db)
        enrolled = {e.track_id for e in LearningService.get_enrollments(db, user_id)}
        return RecommendationService.recommend(tracks, enrolled, now)

    @staticmethod
    def get_dashboard(db: Session, user_id: int, now: datetime | None = None) -> dict:
        now = pm.to_utc(now or pm.utcnow())

        enrollments = LearningService.get_enrollments(db, user_id)
        progress = LearningService.get_progress(db, user_id)
        certificates = LearningService.get_certificates(db, user_id)
        recent = LearningService.get_recent_completions(db, user_id, days=7, now=now)
        tracks = LearningService.get_published_tracks(db)
        first_started = min((e.started_at for e in enrollments if e.started_at), key=pm.to_utc, default=None)
        passes = LearningService.get_quiz_passes(db, user_id)

        counts = LearningService.get_track_counts(db, user_id, [e.track_id for e in enrollments])

        stats = build_stats(enrollments, progress, certificates, counts, now)
        metrics = pm.enhanced_metrics(progress, first_started, passes, now)
        metrics["consistency_label"] = pm.consistency_label(metrics["consistency_score"])
        enrolled_ids = {e.track_id for e in enrollments}

        logger.debug("Dashboard assembled for user %s: %s enrollments, %s progress rows",
                     user_id, len(enrollments), len(progress))

        return {
            "stats": stats,
            "streak": pm.streak_summary(stats["streak"]),
            "metrics": metrics,
            "courses": build_course_cards(enrollments, counts),
            "certificates": build_certificate_cards(certificates),
            "activity": [
                {"date": a["date"], "count": a["lessons_completed"]}
                for a in pm.activity_by_date(recent)
            ],
            "timeline": build_timeline(progress),
            "recommendations": RecommendationService.recommend(tracks, enrolled_ids, now),
        }
