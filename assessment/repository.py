"""
Persistence collaborator: thin query helpers over a SQLAlchemy session.

Repositories never commit; transaction boundaries belong to the services.
"""
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from db.models.assessment_questions import AssessmentQuestion
from db.models.assessments import MAX_TOTAL_POINTS, Assessment
from db.models.questions import Question
from db.models.student_answers import StudentAnswer
from db.models.student_attempts import AttemptStatus, StudentAttempt
from db.models.users import User

from .errors import NotFound, PersistenceError, ValidationError


class AttemptRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, attempt_id: int, for_update: bool = False) -> StudentAttempt:
        query = self.db.query(StudentAttempt).filter(StudentAttempt.id == attempt_id)
        if for_update:
            query = query.with_for_update()
        attempt = query.first()
        if attempt is None:
            raise NotFound("attempt", attempt_id)
        return attempt

    def get_active(self, student_id: str, assessment_id: int) -> Optional[StudentAttempt]:
        return (
            self.db.query(StudentAttempt)
            .filter(
                StudentAttempt.student_id == student_id,
                StudentAttempt.assessment_id == assessment_id,
                StudentAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .first()
        )

    def count_for_student(self, student_id: str, assessment_id: int) -> int:
        return (
            self.db.query(func.count(StudentAttempt.id))
            .filter(
                StudentAttempt.student_id == student_id,
                StudentAttempt.assessment_id == assessment_id,
            )
            .scalar()
        )

    def create(self, attempt: StudentAttempt) -> StudentAttempt:
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def list_by_assessment(
        self, assessment_id: int, statuses: Optional[Iterable[AttemptStatus]] = None
    ) -> List[StudentAttempt]:
        query = self.db.query(StudentAttempt).filter(StudentAttempt.assessment_id == assessment_id)
        if statuses is not None:
            query = query.filter(StudentAttempt.status.in_([s.value for s in statuses]))
        return query.order_by(StudentAttempt.id).all()

    def overdue_ids(self, now) -> List[int]:
        rows = (
            self.db.query(StudentAttempt.id)
            .filter(
                StudentAttempt.status == AttemptStatus.IN_PROGRESS.value,
                StudentAttempt.ended_at < now,
            )
            .order_by(StudentAttempt.id)
            .all()
        )
        return [row[0] for row in rows]

    def ids_with_question(self, question_id: int, statuses: Iterable[AttemptStatus]) -> List[int]:
        rows = (
            self.db.query(StudentAttempt.id)
            .join(StudentAnswer, StudentAnswer.attempt_id == StudentAttempt.id)
            .filter(
                StudentAnswer.question_id == question_id,
                StudentAttempt.status.in_([s.value for s in statuses]),
            )
            .order_by(StudentAttempt.id)
            .all()
        )
        return [row[0] for row in rows]


class AnswerRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, answer_id: int) -> StudentAnswer:
        answer = (
            self.db.query(StudentAnswer)
            .options(joinedload(StudentAnswer.attempt), joinedload(StudentAnswer.question))
            .filter(StudentAnswer.id == answer_id)
            .first()
        )
        if answer is None:
            raise NotFound("answer", answer_id)
        return answer

    def by_attempt(self, attempt_id: int) -> List[StudentAnswer]:
        return (
            self.db.query(StudentAnswer)
            .options(joinedload(StudentAnswer.question))
            .filter(StudentAnswer.attempt_id == attempt_id)
            .order_by(StudentAnswer.id)
            .all()
        )

    def by_attempt_and_question(self, attempt_id: int, question_id: int) -> Optional[StudentAnswer]:
        return (
            self.db.query(StudentAnswer)
            .filter(StudentAnswer.attempt_id == attempt_id, StudentAnswer.question_id == question_id)
            .first()
        )

    def create_batch(self, answers: List[StudentAnswer]) -> None:
        self.db.add_all(answers)
        self.db.flush()

    def update_batch(self, answers: List[StudentAnswer]) -> None:
        for answer in answers:
            self.db.add(answer)
        self.db.flush()

    def count_answered(self, attempt_id: int) -> int:
        answers = self.db.query(StudentAnswer.answer).filter(StudentAnswer.attempt_id == attempt_id).all()
        return sum(1 for (payload,) in answers if payload not in (None, "", [], {}))

    def count_ungraded(self, attempt_id: int) -> int:
        return (
            self.db.query(func.count(StudentAnswer.id))
            .filter(StudentAnswer.attempt_id == attempt_id, StudentAnswer.is_graded.is_(False))
            .scalar()
        )


class AssessmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, assessment_id: int) -> Assessment:
        assessment = self.db.query(Assessment).filter(Assessment.id == assessment_id).first()
        if assessment is None:
            raise NotFound("assessment", assessment_id)
        return assessment

    def get_question(self, question_id: int) -> Question:
        question = self.db.query(Question).filter(Question.id == question_id).first()
        if question is None:
            raise NotFound("question", question_id)
        return question

    def questions(self, assessment_id: int) -> List[AssessmentQuestion]:
        return (
            self.db.query(AssessmentQuestion)
            .options(joinedload(AssessmentQuestion.question))
            .filter(AssessmentQuestion.assessment_id == assessment_id)
            .order_by(AssessmentQuestion.order, AssessmentQuestion.id)
            .all()
        )

    def points_map(self, assessment_id: int) -> Dict[int, int]:
        rows = (
            self.db.query(AssessmentQuestion.question_id, AssessmentQuestion.points)
            .filter(AssessmentQuestion.assessment_id == assessment_id)
            .all()
        )
        return {question_id: points for question_id, points in rows}

    def total_points(self, assessment_id: int) -> int:
        total = (
            self.db.query(func.sum(AssessmentQuestion.points))
            .filter(AssessmentQuestion.assessment_id == assessment_id)
            .scalar()
        )
        return int(total or 0)

    def question_count(self, assessment_id: int) -> int:
        return (
            self.db.query(func.count(AssessmentQuestion.id))
            .filter(AssessmentQuestion.assessment_id == assessment_id)
            .scalar()
        )

    def add_question(self, assessment_id: int, question_id: int, points: int, order: Optional[int] = None) -> AssessmentQuestion:
        """Bind a question to an assessment, keeping the point total within budget."""
        if points is None or points < 1:
            raise ValidationError("points are required and must be positive", "points", points)

        self.get(assessment_id)
        self.get_question(question_id)

        total = self.total_points(assessment_id) + points
        if total > MAX_TOTAL_POINTS:
            raise ValidationError(
                f"total points would be {total}, the limit is {MAX_TOTAL_POINTS}", "points", points
            )

        if order is None:
            order = self.question_count(assessment_id)

        binding = AssessmentQuestion(
            assessment_id=assessment_id, question_id=question_id, points=points, order=order
        )
        self.db.add(binding)
        self.db.flush()
        return binding


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFound("user", user_id)
        return user

    def get_role(self, user_id: str) -> str:
        return self.get(user_id).role


@contextmanager
def transaction(session_factory) -> Iterator[Session]:
    """Session whose work is committed on success and rolled back on any error."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"database error: {e.__class__.__name__}") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
