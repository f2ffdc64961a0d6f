# /ielts_backend/models/exam_session.py
import enum
from datetime import datetime
from typing import Optional, Any
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Float, ForeignKey, DateTime, JSON

from ielts_backend.core.database import Base


class ExamType(str, enum.Enum):
    READING = "READING"
    LISTENING = "LISTENING"
    WRITING = "WRITING"
    SPEAKING = "SPEAKING"


OBJECTIVE_EXAM_TYPES = {ExamType.READING.value, ExamType.LISTENING.value}
SUBJECTIVE_EXAM_TYPES = {ExamType.WRITING.value, ExamType.SPEAKING.value}


class ExamStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ExamSession(Base):
    """One paid exam attempt, funded by exactly one USAGE ledger entry."""
    __tablename__ = "exam_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)

    exam_type: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default=ExamStatus.IN_PROGRESS.value)

    # Selected content (answer keys stripped), later answers/results/grading
    payload: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sub_scores: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # USD spent on AI grading
    ai_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # set while a subjective submission waits on AI grading; cleared on error
    grading_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
