from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import MAX_EXTENSION_MINUTES


# ===== requests =====

class StartAttemptRequest(BaseModel):
    session_data: Optional[Dict[str, Any]] = None


class AnswerSubmission(BaseModel):
    question_id: int
    answer: Any = None
    time_spent: Optional[int] = Field(default=None, ge=0)
    flagged: Optional[bool] = None


class SubmitAttemptRequest(BaseModel):
    answers: List[AnswerSubmission] = []
    time_spent: Optional[int] = Field(default=None, ge=0)
    end_reason: Optional[str] = None


class ExtendTimeRequest(BaseModel):
    minutes: int = Field(gt=0, le=MAX_EXTENSION_MINUTES)


class ManualGradeRequest(BaseModel):
    score: float = Field(allow_inf_nan=False)
    feedback: Optional[str] = None


# ===== responses =====

class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: int
    answer: Any = None
    score: float
    max_score: int
    is_correct: Optional[bool] = None
    is_graded: bool
    graded_by: Optional[str] = None
    feedback: Optional[str] = None
    flagged: bool
    time_spent: int


class AttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    assessment_id: int
    student_id: str
    attempt_number: int
    status: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent: int
    time_remaining: int
    score: float
    max_score: int
    percentage: float
    passed: bool
    is_graded: bool
    current_question_index: int
    questions_answered: int
    total_questions: int
    end_reason: Optional[str] = None


class AttemptDetail(AttemptOut):
    can_submit: bool = False
    questions: List[Dict[str, Any]] = []
    answers: List[AnswerOut] = []


class GradingResult(BaseModel):
    answer_id: int
    question_id: int
    score: float
    max_score: float
    is_correct: Optional[bool] = None
    partial_credit: bool = False
    is_graded: bool = True
    feedback: Optional[str] = None
    graded_at: datetime
    graded_by: Optional[str] = None


class AttemptGradingResult(BaseModel):
    attempt_id: int
    total_score: float
    max_score: float
    percentage: float
    passed: bool
    is_graded: bool
    grade: str
    questions: List[GradingResult]
    graded_at: datetime


class GradingOverview(BaseModel):
    assessment_id: int
    total_attempts: int
    graded_attempts: int
    pending_manual_grading: int
    average_percentage: float
