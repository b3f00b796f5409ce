from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from database import Base


class PayoutBatch(Base):
    __tablename__ = "affiliate_payout_batches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default="DRAFT", nullable=False)  # DRAFT/READY/PAID/CANCELLED
    total_amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(10), default="usd", nullable=False)
    due_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    paid_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    referrer = relationship("User", foreign_keys=[referrer_id])
    referrals = relationship("Referral", back_populates="payout_batch")
