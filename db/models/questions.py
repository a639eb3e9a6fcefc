from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from assessment.clock import utcnow
from db.database import Base


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(30), nullable=False, index=True)
    text = Column(Text, nullable=False)
    # suggested points only, AssessmentQuestion.points is what grading uses
    points = Column(Integer, nullable=False, default=10)
    content = Column(JSON, nullable=True)
    explanation = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "text": self.text,
            "content": self.content,
            "explanation": self.explanation,
        }
