from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from assessment.clock import utcnow
from db.database import Base


class StudentAnswer(Base):
    __tablename__ = "student_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question_answer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("student_attempts.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)

    # payload shape depends on the question type
    answer = Column(JSON, nullable=True)

    # grading
    score = Column(Float, nullable=False, default=0.0)
    max_score = Column(Integer, nullable=False, default=0)
    is_correct = Column(Boolean, nullable=True)  # unknown until graded
    is_graded = Column(Boolean, nullable=False, default=False)
    graded_by = Column(String(255), nullable=True)  # null when auto-graded
    graded_at = Column(DateTime, nullable=True)
    feedback = Column(Text, nullable=True)

    # timing
    time_spent = Column(Integer, nullable=False, default=0)
    first_answered_at = Column(DateTime, nullable=True)
    last_modified_at = Column(DateTime, nullable=True)

    answer_history = Column(JSON, nullable=True)
    flagged = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    attempt = relationship("StudentAttempt", back_populates="answers")
    question = relationship("Question")

    @property
    def is_manually_graded(self) -> bool:
        return self.graded_by is not None

    def has_payload(self) -> bool:
        return self.answer not in (None, "", [], {})
