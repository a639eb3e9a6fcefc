from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from assessment.clock import utcnow
from db.database import Base

STATUS_DRAFT = "Draft"
STATUS_ACTIVE = "Active"
STATUS_EXPIRED = "Expired"
STATUS_ARCHIVED = "Archived"

MAX_TOTAL_POINTS = 100


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=STATUS_DRAFT, index=True)
    duration = Column(Integer, nullable=False)  # minutes
    passing_score = Column(Integer, nullable=False, default=60)  # percent
    max_attempts = Column(Integer, nullable=False, default=1)
    due_date = Column(DateTime, nullable=True)
    created_by = Column(String(255), nullable=False, index=True)

    randomize_questions = Column(Boolean, nullable=False, default=False)
    randomize_options = Column(Boolean, nullable=False, default=False)
    show_correct_answers = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    questions = relationship(
        "AssessmentQuestion",
        back_populates="assessment",
        order_by="AssessmentQuestion.order",
    )
