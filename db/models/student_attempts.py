from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from assessment.clock import utcnow
from db.database import Base


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    TIMED_OUT = "timeout"


TERMINAL_STATUSES = (AttemptStatus.COMPLETED, AttemptStatus.ABANDONED, AttemptStatus.TIMED_OUT)
GRADABLE_STATUSES = (AttemptStatus.COMPLETED, AttemptStatus.TIMED_OUT)

END_REASON_COMPLETED = "completed"
END_REASON_TIMEOUT = "time_out"
END_REASON_ABANDONED = "abandoned"

_ACTIVE = text("status = 'in_progress'")


class StudentAttempt(Base):
    __tablename__ = "student_attempts"
    __table_args__ = (
        # one in-progress attempt per student and assessment
        Index(
            "uq_active_attempt_per_student",
            "student_id",
            "assessment_id",
            unique=True,
            sqlite_where=_ACTIVE,
            postgresql_where=_ACTIVE,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False, index=True)
    student_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS.value, index=True)

    # timing
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)  # deadline
    completed_at = Column(DateTime, nullable=True)
    time_spent = Column(Integer, nullable=False, default=0)  # seconds
    time_remaining = Column(Integer, nullable=False, default=0)  # seconds

    # scoring
    score = Column(Float, nullable=False, default=0.0)
    max_score = Column(Integer, nullable=False, default=0)
    percentage = Column(Float, nullable=False, default=0.0)
    passed = Column(Boolean, nullable=False, default=False)
    is_graded = Column(Boolean, nullable=False, default=False)

    # progress
    current_question_index = Column(Integer, nullable=False, default=0)
    questions_answered = Column(Integer, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False, default=0)

    # session metadata
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    session_data = Column(JSON, nullable=True)
    end_reason = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    answers = relationship("StudentAnswer", back_populates="attempt", order_by="StudentAnswer.id")

    @property
    def is_terminal(self) -> bool:
        return self.status != AttemptStatus.IN_PROGRESS.value

    def is_expired(self, now) -> bool:
        return self.ended_at is not None and now > self.ended_at
