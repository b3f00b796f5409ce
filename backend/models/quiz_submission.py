from datetime import datetime, timezone

from sqlalchemy import Column, Integer, Text, DateTime, Boolean, ForeignKey
from database import Base


class QuizSubmission(Base):
    __tablename__ = "quiz_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    lesson_id = Column(Integer, ForeignKey("lessons.id"), nullable=False)
    score_pct = Column(Integer, default=0)
    passed = Column(Boolean, default=False)
    answers = Column(Text, nullable=True)  # JSON object of question -> selected options
    submitted_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
