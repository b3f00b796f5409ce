"""
affiliate_service.py — Referral lifecycle & payout batching
Summarises referral counts per referrer, promotes due referrals to PAYABLE,
groups payable referrals into payout batches and marks batches paid.
"""

import csv
import io
import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta

from sqlalchemy.orm import Session, joinedload

from config import (
    REFERRAL_HOLD_DAYS,
    REFERRAL_INITIAL_COMMISSION_RATE,
    REFERRAL_RECURRING_COMMISSION_RATE,
)
from exceptions import NotFoundError, PayoutBatchError
from models.payout_batch import PayoutBatch
from models.referral import Referral
from models.user import User
from services.progress_metrics import to_utc, utcnow

logger = logging.getLogger(__name__)

QUALIFIED_STATUSES = ("QUALIFIED", "PAYABLE", "PAID")
CSV_HEADER = [
    "Affiliate Name",
    "Affiliate Email",
    "Referral Id",
    "Referred Name",
    "Referred Email",
    "Status",
    "Signed Up At",
    "Qualified At",
    "Payable At",
    "Paid At",
    "Commission Amount",
    "Currency",
]


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------
def compute_payable_at(qualified_at: datetime | None, hold_days: int) -> datetime | None:
    if qualified_at is None:
        return None
    return to_utc(qualified_at) + timedelta(days=hold_days)


def compute_commission_amount_cents(plan_price_cents: int, commission_type: str, commission_value: float) -> int:
    """FIXED is an amount in cents; PERCENT accepts 0-1 or 0-100."""
    if not plan_price_cents or plan_price_cents <= 0:
        return 0
    if commission_type == "FIXED":
        return max(0, math.floor(commission_value + 0.5))
    rate = commission_value / 100 if commission_value > 1 else commission_value
    return max(0, math.floor(plan_price_cents * rate))


def derive_referral_status(referral, membership_status: str | None = None, now: datetime | None = None) -> str:
    now = to_utc(now or utcnow())
    if referral.status == "VOID":
        return "VOID"
    if referral.paid_at:
        return "PAID"
    if referral.payable_at and to_utc(referral.payable_at) <= now:
        return "PAYABLE"
    if referral.qualified_at:
        return "QUALIFIED"
    if referral.trial_started_at or membership_status == "trial":
        return "TRIAL"
    if referral.signed_up_at:
        return "SIGNED_UP"
    return "PENDING"


def summarize_referrals(referrals: list) -> dict:
    """Signup/qualified/payable counts and paid commission for one referrer's rows."""
    return {
        "total_signups": sum(1 for r in referrals if r.referred_user_id is not None),
        "qualified": sum(1 for r in referrals if r.status in QUALIFIED_STATUSES),
        "payable": sum(1 for r in referrals if r.status == "PAYABLE"),
        "paid_total_cents": sum(r.commission_amount_cents or 0 for r in referrals if r.status == "PAID"),
    }


def summarize_by_referrer(referrals: list) -> dict[int, dict]:
    grouped = defaultdict(list)
    for r in referrals:
        grouped[r.referrer_id].append(r)
    return {referrer_id: summarize_referrals(rows) for referrer_id, rows in grouped.items()}


def batch_totals(referrals: list) -> dict:
    """Total, currency and due date for a set of payable referrals."""
    if not referrals:
        raise PayoutBatchError("No payable referrals found")

    currency = referrals[0].currency
    if any(r.currency != currency for r in referrals):
        raise PayoutBatchError("Mixed currencies not supported in a single payout batch")

    due_dates = [to_utc(r.payable_at) for r in referrals if r.payable_at]
    return {
        "total_amount_cents": sum(r.commission_amount_cents or 0 for r in referrals),
        "currency": currency,
        "due_at": max(due_dates) if due_dates else None,
    }


def _iso(dt: datetime | None) -> str:
    return to_utc(dt).isoformat() if dt else ""


class AffiliateService:
    @staticmethod
    def get_referrals(db: Session, referrer_id: int) -> list[Referral]:
        try:
            return (
                db.query(Referral)
                .filter_by(referrer_id=referrer_id)
                .order_by(Referral.created_at.desc())
                .all()
            )
        except Exception:
            logger.exception("Failed to fetch referrals for referrer %s", referrer_id)
            return []

    @staticmethod
    def get_summary(db: Session, user_id: int) -> dict:
        referrals = AffiliateService.get_referrals(db, user_id)
        return summarize_referrals(referrals)

    @staticmethod
    def list_affiliates(db: Session) -> list[dict]:
        """Every referrer with a signed-up referral, most signups first."""
        try:
            referrals = db.query(Referral).filter(Referral.referred_user_id.isnot(None)).all()
            stats = summarize_by_referrer(referrals)
            users = {u.id: u for u in db.query(User).filter(User.id.in_(list(stats))).all()} if stats else {}
        except Exception:
            logger.exception("Failed to build affiliate overview")
            return []

        rows = []
        for referrer_id, s in stats.items():
            u = users.get(referrer_id)
            rows.append({
                "referrer": {
                    "id": referrer_id,
                    "name": u.name if u else None,
                    "email": u.email if u else None,
                    "referral_code": u.referral_code if u else None,
                },
                "stats": s,
            })
        rows.sort(key=lambda r: r["stats"]["total_signups"], reverse=True)
        return rows

    @staticmethod
    def qualify_referral(
        db: Session,
        referred_user_id: int,
        paid_at: datetime,
        plan_price_cents: int,
        currency: str | None = None,
        is_initial: bool = True,
        now: datetime | None = None,
    ) -> Referral | None:
        """Record a referred user's first payment: commission, hold window, then the derived status."""
        now = to_utc(now or utcnow())
        try:
            referral = db.query(Referral).filter_by(referred_user_id=referred_user_id).first()
            if not referral or referral.status in ("VOID", "PAID"):
                return None
            if referral.qualified_at:
                return referral

            hold_days = referral.hold_days if referral.hold_days is not None else REFERRAL_HOLD_DAYS
            commission_type = referral.commission_type or "PERCENT"
            if referral.commission_value is not None:
                commission_value = referral.commission_value
            else:
                commission_value = REFERRAL_INITIAL_COMMISSION_RATE if is_initial else REFERRAL_RECURRING_COMMISSION_RATE
            amount = referral.commission_amount_cents
            if amount is None:
                amount = compute_commission_amount_cents(plan_price_cents, commission_type, commission_value)

            qualified_at = to_utc(paid_at)
            referral.qualified_at = qualified_at
            referral.commission_type = commission_type
            referral.commission_value = commission_value
            referral.commission_amount_cents = amount
            referral.currency = currency or referral.currency
            referral.hold_days = hold_days
            referral.payable_at = referral.payable_at or compute_payable_at(qualified_at, hold_days)
            referral.status = derive_referral_status(referral, now=now)
            db.commit()
            db.refresh(referral)
            logger.info("Referral %s qualified as %s", referral.id, referral.status)
            return referral
        except Exception:
            db.rollback()
            logger.exception("Failed to qualify referral for user %s", referred_user_id)
            return None

    @staticmethod
    def void_referral_if_in_hold(
        db: Session,
        referred_user_id: int,
        occurred_at: datetime,
        reason: str,
    ) -> Referral | None:
        """
        Void a referral whose payment was refunded before qualification or inside the
        hold window, so it never becomes payable. PAID and VOID referrals are left alone.
        Returns the voided referral, or None when nothing changed.
        """
        occurred_at = to_utc(occurred_at)
        try:
            referral = db.query(Referral).filter_by(referred_user_id=referred_user_id).first()
            if not referral or referral.status in ("PAID", "VOID"):
                return None

            before_qualification = referral.qualified_at is None
            within_hold = referral.payable_at is None or occurred_at < to_utc(referral.payable_at)
            if not (before_qualification or within_hold):
                return None

            referral.status = "VOID"
            referral.voided_at = occurred_at
            referral.void_reason = reason
            db.commit()
            db.refresh(referral)
            logger.info("Referral %s voided: %s", referral.id, reason)
            return referral
        except Exception:
            db.rollback()
            logger.exception("Failed to void referral for user %s", referred_user_id)
            return None

    @staticmethod
    def list_referrer_referrals(db: Session, referrer_id: int) -> dict:
        """One affiliate's referrals, newest first. Raises NotFoundError for an unknown referrer."""
        referrer = db.query(User).filter_by(id=referrer_id).first()
        if not referrer:
            raise NotFoundError("Affiliate", referrer_id)

        referrals = (
            db.query(Referral)
            .options(joinedload(Referral.referred_user))
            .filter_by(referrer_id=referrer_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
            .all()
        )
        return {
            "referrer": {
                "id": referrer.id,
                "name": referrer.name,
                "email": referrer.email,
                "referral_code": referrer.referral_code,
            },
            "referrals": [{
                "id": r.id,
                "status": r.status,
                "referred_email": r.referred_email or (r.referred_user.email if r.referred_user else None),
                "referred_name": r.referred_name or (r.referred_user.name if r.referred_user else None),
                "signed_up_at": r.signed_up_at,
                "trial_started_at": r.trial_started_at,
                "qualified_at": r.qualified_at,
                "payable_at": r.payable_at,
                "paid_at": r.paid_at,
                "voided_at": r.voided_at,
                "commission_amount_cents": r.commission_amount_cents,
                "currency": r.currency,
                "payout_batch_id": r.payout_batch_id,
            } for r in referrals],
        }

    @staticmethod
    def promote_payable(db: Session, now: datetime | None = None) -> dict:
        """Re-derive every QUALIFIED referral; those whose hold has elapsed become PAYABLE."""
        now = to_utc(now or utcnow())
        candidates = db.query(Referral).filter(Referral.status == "QUALIFIED").all()
        updated = 0
        for r in candidates:
            status = derive_referral_status(r, now=now)
            if status != r.status:
                r.status = status
                updated += 1
        db.commit()
        logger.info("Affiliate payable job processed %s referrals, updated %s", len(candidates), updated)
        return {"processed": len(candidates), "updated": updated}

    @staticmethod
    def create_payout_batch(
        db: Session,
        referrer_id: int,
        referral_ids: list[int] | None = None,
        now: datetime | None = None,
    ) -> PayoutBatch:
        """Group the referrer's unbatched PAYABLE referrals (or a chosen subset) into a READY batch."""
        now = to_utc(now or utcnow())
        q = db.query(Referral).filter(
            Referral.referrer_id == referrer_id,
            Referral.status == "PAYABLE",
            Referral.payout_batch_id.is_(None),
            Referral.commission_amount_cents.isnot(None),
        )
        if referral_ids:
            q = q.filter(Referral.id.in_(referral_ids))
        referrals = q.all()

        totals = batch_totals(referrals)
        batch = PayoutBatch(
            referrer_id=referrer_id,
            status="READY",
            total_amount_cents=totals["total_amount_cents"],
            currency=totals["currency"],
            due_at=totals["due_at"] or now,
            created_at=now,
        )
        try:
            db.add(batch)
            db.flush()
            for r in referrals:
                r.payout_batch_id = batch.id
            db.commit()
            db.refresh(batch)
        except Exception:
            db.rollback()
            raise

        logger.info("Affiliate payout batch %s created for referrer %s: %s cents",
                    batch.id, referrer_id, batch.total_amount_cents)
        return batch

    @staticmethod
    def mark_batch_paid(db: Session, batch_id: int, paid_by_user_id: int | None, now: datetime | None = None) -> PayoutBatch:
        """READY -> PAID. Terminal; any other source status is rejected."""
        now = to_utc(now or utcnow())
        batch = db.query(PayoutBatch).filter_by(id=batch_id).first()
        if not batch:
            raise NotFoundError("PayoutBatch", batch_id)
        if batch.status != "READY":
            raise PayoutBatchError(f"Cannot mark a {batch.status} batch as paid")

        try:
            batch.status = "PAID"
            batch.paid_at = now
            batch.paid_by_user_id = paid_by_user_id
            for r in batch.referrals:
                r.status = "PAID"
                r.paid_at = now
            db.commit()
            db.refresh(batch)
        except Exception:
            db.rollback()
            raise

        logger.info("Affiliate payout batch %s marked paid by %s", batch_id, paid_by_user_id)
        return batch

    @staticmethod
    def export_batch_csv(db: Session, batch_id: int) -> str:
        batch = (
            db.query(PayoutBatch)
            .options(joinedload(PayoutBatch.referrer), joinedload(PayoutBatch.referrals))
            .filter_by(id=batch_id)
            .first()
        )
        if not batch:
            raise NotFoundError("PayoutBatch", batch_id)

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        referrer = batch.referrer
        for r in sorted(batch.referrals, key=lambda r: r.id):
            referred = r.referred_user
            writer.writerow([
                (referrer.name if referrer else None) or "",
                (referrer.email if referrer else None) or "",
                r.id,
                r.referred_name or (referred.name if referred else None) or "",
                r.referred_email or (referred.email if referred else None) or "",
                r.status,
                _iso(r.signed_up_at),
                _iso(r.qualified_at),
                _iso(r.payable_at),
                _iso(r.paid_at),
                f"{r.commission_amount_cents / 100:.2f}" if r.commission_amount_cents is not None else "",
                r.currency,
            ])

        logger.info("Affiliate payout batch %s exported", batch_id)
        return buf.getvalue()
