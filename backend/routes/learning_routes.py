from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from services.dashboard_service import DashboardService, build_certificate_cards
from services.learning_service import LearningService

router = APIRouter(prefix="/api/v1/learning", tags=["Learning"])


class LessonComplete(BaseModel):
    time_spent_ms: Optional[int] = Field(default=None, ge=0)


class QuizSubmit(BaseModel):
    score_pct: int = Field(ge=0, le=100)
    answers: Optional[dict[str, list[int]]] = None


@router.get("/dashboard")
async def learning_dashboard(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return DashboardService.get_dashboard(db, user_id)


@router.get("/tracks")
async def list_tracks(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return LearningService.get_catalog(db, user_id)


@router.post("/tracks/{track_id}/enroll")
async def enroll(track_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    enrollment = LearningService.enroll(db, user_id, track_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Track not found")
    return {
        "status": "success",
        "track_id": enrollment.track_id,
        "started_at": enrollment.started_at,
        "progress_pct": enrollment.progress_pct,
    }


@router.post("/lessons/{lesson_id}/complete")
async def complete_lesson(
    lesson_id: int,
    body: LessonComplete = LessonComplete(),
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = LearningService.complete_lesson(db, user_id, lesson_id, body.time_spent_ms)
    if result is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"status": "success", "progress": result}


@router.post("/lessons/{lesson_id}/quiz")
async def submit_quiz(
    lesson_id: int,
    body: QuizSubmit,
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    submission = LearningService.submit_quiz(db, user_id, lesson_id, body.score_pct, body.answers)
    if submission is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"status": "success", "passed": submission.passed, "score_pct": submission.score_pct}


@router.get("/track-progress")
async def track_progress(track_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    result = LearningService.get_track_progress(db, user_id, track_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Track not found")
    return result


@router.get("/streak")
async def streak(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return DashboardService.get_streak(db, user_id)


@router.get("/metrics")
async def metrics(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return DashboardService.get_metrics(db, user_id)


@router.get("/recommendations")
async def recommendations(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return DashboardService.get_recommendations(db, user_id)


@router.get("/certificates")
async def certificates(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return build_certificate_cards(LearningService.get_certificates(db, user_id))
