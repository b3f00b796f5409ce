"""
learning_service.py — Tracks, enrollments & lesson progress
Fetches a learner's rows and performs the write actions (enroll, complete lesson,
submit quiz). Track completion is always recounted from LessonProgress; the
percentage stored on Enrollment is only a cache of that count.
"""

import json
import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session, joinedload

from config import QUIZ_PASS_PCT
from models.track import Track, TrackSection, Lesson
from models.enrollment import Enrollment
from models.lesson_progress import LessonProgress
from models.certificate import Certificate
from models.quiz_submission import QuizSubmission
from services import progress_metrics as pm

logger = logging.getLogger(__name__)


class LearningService:
    # ------------------------------------------------------------------
    # Raw fetch layer: every read degrades to an empty result
    # ------------------------------------------------------------------
    @staticmethod
    def get_enrollments(db: Session, user_id: int) -> list[Enrollment]:
        """Furthest along first, then most recently started."""
        try:
            return (
                db.query(Enrollment)
                .options(joinedload(Enrollment.track).joinedload(Track.lessons))
                .filter(Enrollment.user_id == user_id)
                .order_by(Enrollment.progress_pct.desc(), Enrollment.started_at.desc())
                .all()
            )
        except Exception:
            logger.exception("Failed to fetch enrollments for user %s", user_id)
            return []

    @staticmethod
    def get_progress(db: Session, user_id: int, track_id: int | None = None) -> list[LessonProgress]:
        try:
            q = (
                db.query(LessonProgress)
                .options(joinedload(LessonProgress.lesson).joinedload(Lesson.track))
                .filter(LessonProgress.user_id == user_id)
            )
            if track_id is not None:
                q = q.join(Lesson, LessonProgress.lesson_id == Lesson.id).filter(Lesson.track_id == track_id)
            return q.order_by(LessonProgress.completed_at.desc()).all()
        except Exception:
            logger.exception("Failed to fetch lesson progress for user %s", user_id)
            return []

    @staticmethod
    def get_recent_completions(db: Session, user_id: int, days: int = 7, now: datetime | None = None) -> list[LessonProgress]:
        try:
            start = pm.to_utc(now or pm.utcnow()) - timedelta(days=days)
            return (
                db.query(LessonProgress)
                .options(joinedload(LessonProgress.lesson).joinedload(Lesson.track))
                .filter(
                    LessonProgress.user_id == user_id,
                    LessonProgress.completed_at.isnot(None),
                    LessonProgress.completed_at >= start,
                )
                .order_by(LessonProgress.completed_at.asc())
                .all()
            )
        except Exception:
            logger.exception("Failed to fetch recent completions for user %s", user_id)
            return []

    @staticmethod
    def get_certificates(db: Session, user_id: int) -> list[Certificate]:
        try:
            return (
                db.query(Certificate)
                .options(joinedload(Certificate.track))
                .filter_by(user_id=user_id)
                .order_by(Certificate.issued_at.desc())
                .all()
            )
        except Exception:
            logger.exception("Failed to fetch certificates for user %s", user_id)
            return []

    @staticmethod
    def get_quiz_passes(db: Session, user_id: int) -> list[bool]:
        """Pass flag of every quiz submission, oldest first."""
        try:
            rows = (
                db.query(QuizSubmission.passed)
                .filter_by(user_id=user_id)
                .order_by(QuizSubmission.submitted_at.asc(), QuizSubmission.id.asc())
                .all()
            )
            return [bool(r[0]) for r in rows]
        except Exception:
            logger.exception("Failed to fetch quiz results for user %s", user_id)
            return []

    @staticmethod
    def get_first_enrollment_at(db: Session, user_id: int) -> datetime | None:
        try:
            first = (
                db.query(Enrollment)
                .filter_by(user_id=user_id)
                .order_by(Enrollment.started_at.asc())
                .first()
            )
            return first.started_at if first else None
        except Exception:
            logger.exception("Failed to fetch first enrollment for user %s", user_id)
            return None

    @staticmethod
    def get_published_tracks(db: Session) -> list[Track]:
        """Published tracks, newest first."""
        try:
            return (
                db.query(Track)
                .filter(Track.published_at.isnot(None))
                .order_by(Track.published_at.desc())
                .all()
            )
        except Exception:
            logger.exception("Failed to fetch published tracks")
            return []

    @staticmethod
    def get_catalog(db: Session, user_id: int) -> list[dict]:
        """Published tracks flagged with the user's enrollment state."""
        tracks = LearningService.get_published_tracks(db)
        try:
            enrollments = db.query(Enrollment.track_id, Enrollment.progress_pct).filter_by(user_id=user_id).all()
        except Exception:
            logger.exception("Failed to fetch enrollment map for user %s", user_id)
            enrollments = []
        enrolled = {track_id: pct for track_id, pct in enrollments}

        return [{
            "id": t.id,
            "slug": t.slug,
            "title": t.title,
            "description": t.summary,
            "cover_url": t.cover_url,
            "published_at": t.published_at,
            "is_enrolled": t.id in enrolled,
            "progress_pct": enrolled.get(t.id) or 0,
        } for t in tracks]

    # ------------------------------------------------------------------
    # Track progress: single source of truth
    # ------------------------------------------------------------------
    @staticmethod
    def count_track_lessons(db: Session, user_id: int, track_id: int) -> tuple[int, int]:
        """(completed, total) over the track's published lessons."""
        total = (
            db.query(Lesson)
            .filter(Lesson.track_id == track_id, Lesson.published_at.isnot(None))
            .count()
        )
        completed = (
            db.query(LessonProgress)
            .join(Lesson, LessonProgress.lesson_id == Lesson.id)
            .filter(
                LessonProgress.user_id == user_id,
                LessonProgress.completed_at.isnot(None),
                Lesson.track_id == track_id,
                Lesson.published_at.isnot(None),
            )
            .count()
        )
        return completed, total

    @staticmethod
    def refresh_track_progress(db: Session, user_id: int, track_id: int, now: datetime | None = None) -> dict:
        """Recount the track and rewrite the cached percentage on the enrollment. Does not commit."""
        now = pm.to_utc(now or pm.utcnow())
        completed, total = LearningService.count_track_lessons(db, user_id, track_id)
        pct = pm.progress_pct(completed, total)

        enrollment = db.query(Enrollment).filter_by(user_id=user_id, track_id=track_id).first()
        if enrollment is None:
            enrollment = Enrollment(user_id=user_id, track_id=track_id, started_at=now)
            db.add(enrollment)

        enrollment.progress_pct = pct
        if pct == 100:
            enrollment.completed_at = enrollment.completed_at or now
        else:
            enrollment.completed_at = None

        return {
            "progress_pct": pct,
            "completed_lessons": completed,
            "total_lessons": total,
            "completed_at": enrollment.completed_at,
        }

    @staticmethod
    def refresh_enrolled_progress(db: Session, track_id: int, now: datetime | None = None) -> int:
        """Recount the cached percentage for every learner enrolled in the track. Does not commit."""
        user_ids = [row[0] for row in db.query(Enrollment.user_id).filter_by(track_id=track_id).all()]
        for user_id in user_ids:
            LearningService.refresh_track_progress(db, user_id, track_id, now)
        logger.info("Refreshed progress for %s enrollments on track %s", len(user_ids), track_id)
        return len(user_ids)

    @staticmethod
    def get_track_counts(db: Session, user_id: int, track_ids) -> dict[int, tuple[int, int]]:
        """(completed, total) published lessons per track."""
        try:
            return {tid: LearningService.count_track_lessons(db, user_id, tid) for tid in track_ids}
        except Exception:
            logger.exception("Failed to count lessons for user %s", user_id)
            return {}

    @staticmethod
    def get_track_progress(db: Session, user_id: int, track_id: int, now: datetime | None = None) -> dict | None:
        try:
            track = db.query(Track).filter_by(id=track_id).first()
            if not track:
                return None

            completed, total = LearningService.count_track_lessons(db, user_id, track_id)
            progress = LearningService.get_progress(db, user_id, track_id)
            enrollment = db.query(Enrollment).filter_by(user_id=user_id, track_id=track_id).first()

            return {
                "track_id": track_id,
                "progress_pct": pm.progress_pct(completed, total),
                "completed_lessons": completed,
                "total_lessons": total,
                "streak": pm.calculate_streak([p.completed_at for p in progress], now),
                "time_spent_ms": pm.total_time_spent(pm.progress_time_ms(p) for p in progress),
                "enrollment": {
                    "started_at": enrollment.started_at,
                    "completed_at": enrollment.completed_at,
                } if enrollment else None,
            }
        except Exception:
            logger.exception("Failed to compute track progress for user %s track %s", user_id, track_id)
            return None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    @staticmethod
    def enroll(db: Session, user_id: int, track_id: int, now: datetime | None = None) -> Enrollment | None:
        """Idempotent; returns the existing enrollment on repeat calls."""
        try:
            track = db.query(Track).filter_by(id=track_id).first()
            if not track or track.published_at is None:
                return None

            enrollment = db.query(Enrollment).filter_by(user_id=user_id, track_id=track_id).first()
            if enrollment:
                return enrollment

            enrollment = Enrollment(
                user_id=user_id,
                track_id=track_id,
                started_at=pm.to_utc(now or pm.utcnow()),
                progress_pct=0,
            )
            db.add(enrollment)
            db.commit()
            db.refresh(enrollment)
            logger.info("User %s enrolled in track %s", user_id, track_id)
            return enrollment
        except Exception:
            db.rollback()
            logger.exception("Failed to enroll user %s in track %s", user_id, track_id)
            return None

    @staticmethod
    def complete_lesson(
        db: Session,
        user_id: int,
        lesson_id: int,
        time_spent_ms: int | None = None,
        now: datetime | None = None,
    ) -> dict | None:
        """Mark a lesson complete, refresh the track cache, issue a certificate at 100%."""
        now = pm.to_utc(now or pm.utcnow())
        try:
            lesson = db.query(Lesson).filter_by(id=lesson_id).first()
            if not lesson:
                return None

            progress = db.query(LessonProgress).filter_by(user_id=user_id, lesson_id=lesson_id).first()
            if progress:
                progress.completed_at = now
                progress.time_spent_ms = time_spent_ms or 0
            else:
                progress = LessonProgress(
                    user_id=user_id,
                    lesson_id=lesson_id,
                    completed_at=now,
                    time_spent_ms=time_spent_ms or 0,
                )
                db.add(progress)
            db.flush()

            track_progress = LearningService.refresh_track_progress(db, user_id, lesson.track_id, now)

            achievements = []
            certificate = None
            if track_progress["progress_pct"] == 100:
                achievements.append({"type": "track_completed", "track_id": lesson.track_id})
                certificate = LearningService._issue_certificate(db, user_id, lesson.track_id, now)
                if certificate is not None:
                    achievements.append({
                        "type": "certificate_earned",
                        "track_id": lesson.track_id,
                        "code": certificate.code,
                    })

            db.commit()
            logger.info("User %s completed lesson %s (track %s at %s%%)",
                        user_id, lesson_id, lesson.track_id, track_progress["progress_pct"])

            stamps = [p.completed_at for p in LearningService.get_progress(db, user_id)]
            streak = pm.calculate_streak(stamps, now)
            if streak > 0 and streak % 7 == 0:
                achievements.append({"type": "streak_milestone", "streak": streak})

            return {
                "lesson_id": lesson_id,
                "track_id": lesson.track_id,
                "completed_at": now,
                "time_spent_ms": progress.time_spent_ms,
                "track_progress": track_progress,
                "streak": streak,
                "achievements": achievements,
            }
        except Exception:
            db.rollback()
            logger.exception("Failed to complete lesson %s for user %s", lesson_id, user_id)
            return None

    @staticmethod
    def _issue_certificate(db: Session, user_id: int, track_id: int, now: datetime) -> Certificate | None:
        """Create the track certificate unless the user already has one. Does not commit."""
        existing = db.query(Certificate).filter_by(user_id=user_id, track_id=track_id).first()
        if existing:
            return None

        track = db.query(Track).filter_by(id=track_id).first()
        cert = Certificate(
            user_id=user_id,
            track_id=track_id,
            code=f"CERT-{int(now.timestamp() * 1000)}-{secrets.token_hex(5)}",
            meta=json.dumps({"track_title": track.title if track else None, "issued_at": now.isoformat()}),
            issued_at=now,
        )
        db.add(cert)
        logger.info("Issued certificate %s to user %s for track %s", cert.code, user_id, track_id)
        return cert

    @staticmethod
    def submit_quiz(
        db: Session,
        user_id: int,
        lesson_id: int,
        score_pct: int,
        answers: dict | None = None,
        now: datetime | None = None,
    ) -> QuizSubmission | None:
        try:
            if not db.query(Lesson).filter_by(id=lesson_id).first():
                return None
            score = max(0, min(100, int(score_pct)))
            submission = QuizSubmission(
                user_id=user_id,
                lesson_id=lesson_id,
                score_pct=score,
                passed=score >= QUIZ_PASS_PCT,
                answers=json.dumps(answers or {}),
                submitted_at=pm.to_utc(now or pm.utcnow()),
            )
            db.add(submission)
            db.commit()
            db.refresh(submission)
            return submission
        except Exception:
            db.rollback()
            logger.exception("Failed to store quiz submission for user %s lesson %s", user_id, lesson_id)
            return None

    # ------------------------------------------------------------------
    # Catalog administration
    # ------------------------------------------------------------------
    @staticmethod
    def create_track(db: Session, data: dict) -> Track | None:
        """Returns None when the slug is already taken."""
        try:
            if db.query(Track).filter_by(slug=data.get("slug")).first():
                return None
            track = Track(
                slug=data.get("slug"),
                title=data.get("title"),
                summary=data.get("summary"),
                cover_url=data.get("cover_url"),
                published_at=data.get("published_at"),
            )
            db.add(track)
            db.commit()
            db.refresh(track)
            return track
        except Exception:
            db.rollback()
            logger.exception("Failed to create track %s", data.get("slug"))
            return None

    @staticmethod
    def add_section(db: Session, track_id: int, data: dict) -> TrackSection | None:
        try:
            if not db.query(Track).filter_by(id=track_id).first():
                return None
            section = TrackSection(
                track_id=track_id,
                title=data.get("title"),
                position=data.get("position", 0),
            )
            db.add(section)
            db.commit()
            db.refresh(section)
            return section
        except Exception:
            db.rollback()
            logger.exception("Failed to add section to track %s", track_id)
            return None

    @staticmethod
    def add_lesson(db: Session, track_id: int, data: dict) -> Lesson | None:
        try:
            if not db.query(Track).filter_by(id=track_id).first():
                return None
            lesson = Lesson(
                track_id=track_id,
                section_id=data.get("section_id"),
                slug=data.get("slug"),
                title=data.get("title"),
                position=data.get("position", 0),
                duration_min=data.get("duration_min"),
                published_at=data.get("published_at"),
            )
            db.add(lesson)
            db.flush()
            # A new published lesson changes every learner's total
            if lesson.published_at is not None:
                LearningService.refresh_enrolled_progress(db, track_id)
            db.commit()
            db.refresh(lesson)
            return lesson
        except Exception:
            db.rollback()
            logger.exception("Failed to add lesson to track %s", track_id)
            return None

    @staticmethod
    def list_tracks(db: Session) -> list[dict]:
        try:
            tracks = db.query(Track).options(joinedload(Track.lessons)).order_by(Track.created_at.desc()).all()
            return [{
                "id": t.id,
                "slug": t.slug,
                "title": t.title,
                "published_at": t.published_at,
                "lesson_count": len(t.lessons),
                "published_lesson_count": sum(1 for l in t.lessons if l.published_at is not None),
            } for t in tracks]
        except Exception:
            logger.exception("Failed to list tracks")
            return []
