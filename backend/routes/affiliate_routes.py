from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import get_current_user
from config import APP_URL, REFERRALS_ENABLED
from database import get_db
from models.user import User
from services.affiliate_service import AffiliateService

router = APIRouter(prefix="/api/v1/affiliate", tags=["Affiliate"])


def _require_enabled():
    if not REFERRALS_ENABLED:
        raise HTTPException(status_code=503, detail="Referral system is disabled")


@router.get("/summary")
async def affiliate_summary(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_enabled()
    user = db.query(User).filter_by(id=user_id).first()
    code = user.referral_code if user else None
    return {
        "referral_code": code,
        "affiliate_link": f"{APP_URL}/register?ref={code}" if code else None,
        "short_link": f"{APP_URL}/{code}" if code else None,
        "stats": AffiliateService.get_summary(db, user_id),
    }


@router.get("/referrals")
async def list_referrals(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_enabled()
    return [{
        "id": r.id,
        "status": r.status,
        "referred_name": r.referred_name,
        "signed_up_at": r.signed_up_at,
        "qualified_at": r.qualified_at,
        "payable_at": r.payable_at,
        "paid_at": r.paid_at,
        "commission_amount_cents": r.commission_amount_cents,
        "currency": r.currency,
    } for r in AffiliateService.get_referrals(db, user_id)]
