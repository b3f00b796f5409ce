from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False)
    code = Column(String(100), unique=True, nullable=False)
    meta = Column(Text, nullable=True)  # JSON — track title snapshot
    issued_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    track = relationship("Track")

    __table_args__ = (
        UniqueConstraint("user_id", "track_id", name="uq_certificate_user_track"),
    )
