# Import all models so they register with SQLAlchemy Base.metadata
# This ensures Base.metadata.create_all() creates all tables

from models.user import User
from models.track import Track, TrackSection, Lesson
from models.enrollment import Enrollment
from models.lesson_progress import LessonProgress
from models.certificate import Certificate
from models.quiz_submission import QuizSubmission
from models.payout_batch import PayoutBatch
from models.referral import Referral

__all__ = [
    "User",
    "Track",
    "TrackSection",
    "Lesson",
    "Enrollment",
    "LessonProgress",
    "Certificate",
    "QuizSubmission",
    "PayoutBatch",
    "Referral",
]
