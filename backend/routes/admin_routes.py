from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field
from typing import List, Optional
from sqlalchemy.orm import Session

from auth import check_admin
from database import get_db
from exceptions import NotFoundError, PayoutBatchError
from models.user import User
from services.affiliate_service import AffiliateService
from services.learning_service import LearningService

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


class PayoutBatchCreate(BaseModel):
    referrer_id: int
    referral_ids: Optional[List[int]] = None


class ReferralQualify(BaseModel):
    referred_user_id: int
    paid_at: datetime
    plan_price_cents: int = Field(ge=0)
    currency: Optional[str] = None
    is_initial: bool = True


class ReferralVoid(BaseModel):
    referred_user_id: int
    reason: str
    occurred_at: Optional[datetime] = None


class TrackCreate(BaseModel):
    title: str
    slug: str
    summary: Optional[str] = None
    cover_url: Optional[str] = None
    published_at: Optional[datetime] = None


class SectionCreate(BaseModel):
    title: str
    position: int = 0


class LessonCreate(BaseModel):
    title: str
    slug: str
    section_id: Optional[int] = None
    position: int = 0
    duration_min: Optional[int] = None
    published_at: Optional[datetime] = None


def _batch_out(batch) -> dict:
    return {
        "id": batch.id,
        "referrer_id": batch.referrer_id,
        "status": batch.status,
        "total_amount_cents": batch.total_amount_cents,
        "currency": batch.currency,
        "due_at": batch.due_at,
        "paid_at": batch.paid_at,
        "paid_by_user_id": batch.paid_by_user_id,
    }


# --- Affiliates ---

@router.get("/affiliates")
async def list_affiliates(admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    return {"affiliates": AffiliateService.list_affiliates(db)}


@router.get("/affiliates/{referrer_id}/referrals")
async def list_affiliate_referrals(referrer_id: int, admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    try:
        return AffiliateService.list_referrer_referrals(db, referrer_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/affiliates/referrals/qualify")
async def qualify_referral(body: ReferralQualify, admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    referral = AffiliateService.qualify_referral(
        db, body.referred_user_id, body.paid_at, body.plan_price_cents, body.currency, body.is_initial
    )
    if not referral:
        raise HTTPException(status_code=404, detail="No open referral for this user")
    return {
        "status": "success",
        "referral": {
            "id": referral.id,
            "status": referral.status,
            "qualified_at": referral.qualified_at,
            "payable_at": referral.payable_at,
            "commission_amount_cents": referral.commission_amount_cents,
            "currency": referral.currency,
        },
    }


@router.post("/affiliates/referrals/void")
async def void_referral(body: ReferralVoid, admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    occurred_at = body.occurred_at or datetime.now(timezone.utc)
    referral = AffiliateService.void_referral_if_in_hold(db, body.referred_user_id, occurred_at, body.reason)
    if not referral:
        return {"status": "unchanged"}
    return {"status": "voided", "referral": {"id": referral.id, "status": referral.status}}


@router.post("/affiliates/payouts")
async def create_payout_batch(
    body: PayoutBatchCreate,
    admin: User = Depends(check_admin),
    db: Session = Depends(get_db),
):
    try:
        batch = AffiliateService.create_payout_batch(db, body.referrer_id, body.referral_ids)
    except PayoutBatchError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"batch": _batch_out(batch)}


@router.post("/affiliates/payouts/{batch_id}/mark-paid")
async def mark_batch_paid(batch_id: int, admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    try:
        batch = AffiliateService.mark_batch_paid(db, batch_id, admin.id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PayoutBatchError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"batch": _batch_out(batch)}


@router.get("/affiliates/payouts/{batch_id}/export.csv")
async def export_batch(batch_id: int, admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    try:
        content = AffiliateService.export_batch_csv(db, batch_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="affiliate-payout-{batch_id}.csv"'},
    )


@router.post("/affiliates/jobs/payables")
async def run_payable_job(admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    return AffiliateService.promote_payable(db)


# --- Catalog ---

@router.get("/tracks")
async def admin_list_tracks(admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    return LearningService.list_tracks(db)


@router.post("/tracks")
async def admin_create_track(body: TrackCreate, admin: User = Depends(check_admin), db: Session = Depends(get_db)):
    track = LearningService.create_track(db, body.model_dump())
    if not track:
        raise HTTPException(status_code=400, detail="A track with this slug already exists")
    return {"status": "success", "track": {"id": track.id, "title": track.title, "slug": track.slug}}


@router.post("/tracks/{track_id}/sections")
async def admin_add_section(
    track_id: int, body: SectionCreate, admin: User = Depends(check_admin), db: Session = Depends(get_db)
):
    section = LearningService.add_section(db, track_id, body.model_dump())
    if not section:
        raise HTTPException(status_code=404, detail="Track not found")
    return {"status": "success", "section": {"id": section.id, "title": section.title}}


@router.post("/tracks/{track_id}/lessons")
async def admin_add_lesson(
    track_id: int, body: LessonCreate, admin: User = Depends(check_admin), db: Session = Depends(get_db)
):
    lesson = LearningService.add_lesson(db, track_id, body.model_dump())
    if not lesson:
        raise HTTPException(status_code=404, detail="Track not found")
    return {"status": "success", "lesson": {"id": lesson.id, "title": lesson.title, "slug": lesson.slug}}
