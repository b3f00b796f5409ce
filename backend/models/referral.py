from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from database import Base


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    referred_user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True)
    referred_email = Column(String(255), nullable=True)
    referred_name = Column(String(200), nullable=True)
    # PENDING/SIGNED_UP/TRIAL/QUALIFIED/PAYABLE/PAID/VOID
    status = Column(String(20), default="PENDING", nullable=False)
    signed_up_at = Column(DateTime, nullable=True)
    trial_started_at = Column(DateTime, nullable=True)
    qualified_at = Column(DateTime, nullable=True)
    payable_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    voided_at = Column(DateTime, nullable=True)
    void_reason = Column(String(200), nullable=True)
    commission_type = Column(String(10), nullable=True)  # FIXED/PERCENT
    commission_value = Column(Float, nullable=True)
    commission_amount_cents = Column(Integer, nullable=True)
    currency = Column(String(10), default="usd", nullable=False)
    hold_days = Column(Integer, nullable=True)
    payout_batch_id = Column(Integer, ForeignKey("affiliate_payout_batches.id"), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    referrer = relationship("User", foreign_keys=[referrer_id])
    referred_user = relationship("User", foreign_keys=[referred_user_id])
    payout_batch = relationship("PayoutBatch", back_populates="referrals")
