"""
Grading orchestrator.

Scores every answer of a finished attempt through the question type
registry, keeps grades a teacher already gave, rolls the per-question
results up into the attempt totals and writes both in one transaction.
"""
import logging
import math
from typing import Callable, Dict, List, Optional

from db.models.student_answers import StudentAnswer
from db.models.student_attempts import GRADABLE_STATUSES, AttemptStatus, StudentAttempt
from db.models.users import GRADER_ROLES, ROLE_TEACHER

from . import question_types
from .clock import utcnow
from .dispatcher import GradingQueue
from .errors import AssessmentError, GradingNotAllowed, InvalidState, NotFound, PermissionDenied, ValidationError
from .events import EventSink, LoggingEventSink, notify
from .permissions import require_grader
from .repository import AnswerRepository, AssessmentRepository, AttemptRepository, UserRepository, transaction
from .schemas import AttemptGradingResult, GradingOverview, GradingResult
from .scoring_engine import letter_grade

logger = logging.getLogger(__name__)

NO_ANSWER_FEEDBACK = "No answer provided."
NOT_AUTO_GRADED_FEEDBACK = "This answer could not be graded automatically and is awaiting review."


def _result(answer: StudentAnswer) -> GradingResult:
    return GradingResult(
        answer_id=answer.id,
        question_id=answer.question_id,
        score=answer.score,
        max_score=answer.max_score,
        is_correct=answer.is_correct,
        partial_credit=0 < answer.score < answer.max_score,
        is_graded=answer.is_graded,
        feedback=answer.feedback,
        graded_at=answer.graded_at or answer.updated_at or utcnow(),
        graded_by=answer.graded_by,
    )


class GradingService:
    def __init__(
        self,
        session_factory,
        queue: GradingQueue,
        event_sink: Optional[EventSink] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.event_sink = event_sink or LoggingEventSink()
        self.clock = clock

    # ===== attempt grading =====

    def auto_grade_attempt(self, attempt_id: int) -> AttemptGradingResult:
        with transaction(self.session_factory) as db:
            result = self._grade(db, attempt_id)
        notify(self.event_sink, result)
        return result

    def grade_attempt(self, attempt_id: int, user_id: str) -> AttemptGradingResult:
        """auto_grade_attempt on behalf of a grader with access to the assessment."""
        db = self.session_factory()
        try:
            attempt = AttemptRepository(db).get(attempt_id)
            require_grader(db, user_id, AssessmentRepository(db).get(attempt.assessment_id), "grade")
        finally:
            db.close()
        return self.auto_grade_attempt(attempt_id)

    def _grade(self, db, attempt_id: int, only_question_id: Optional[int] = None) -> AttemptGradingResult:
        attempt = AttemptRepository(db).get(attempt_id, for_update=True)
        if attempt.status == AttemptStatus.IN_PROGRESS.value:
            raise InvalidState(f"attempt {attempt_id} is still in progress", attempt_id=attempt_id)

        assessments = AssessmentRepository(db)
        assessment = assessments.get(attempt.assessment_id)
        points = assessments.points_map(attempt.assessment_id)
        now = self.clock()

        results: List[GradingResult] = []
        for answer in AnswerRepository(db).by_attempt(attempt_id):
            max_score = points.get(answer.question_id)
            if max_score is None:
                logger.warning(
                    "Skipping answer %s: question %s is no longer part of assessment %s",
                    answer.id,
                    answer.question_id,
                    attempt.assessment_id,
                )
                continue
            answer.max_score = max_score

            rescore = only_question_id is None or answer.question_id == only_question_id
            if rescore and not answer.is_manually_graded:
                self._score_answer(answer, reveal=assessment.show_correct_answers, now=now)
            results.append(_result(answer))

        total = sum(r.score for r in results)
        max_total = sum(r.max_score for r in results)
        percentage = total / max_total * 100 if max_total > 0 else 0.0

        attempt.score = total
        attempt.max_score = int(max_total)
        attempt.percentage = percentage
        attempt.passed = percentage >= assessment.passing_score
        attempt.is_graded = all(r.is_graded for r in results)
        db.flush()

        logger.info(
            "Graded attempt %s: %.2f/%d (%.2f%%), %d answers, complete=%s",
            attempt_id,
            total,
            attempt.max_score,
            percentage,
            len(results),
            attempt.is_graded,
        )
        return AttemptGradingResult(
            attempt_id=attempt_id,
            total_score=total,
            max_score=max_total,
            percentage=percentage,
            passed=attempt.passed,
            is_graded=attempt.is_graded,
            grade=letter_grade(percentage),
            questions=results,
            graded_at=now,
        )

    def _score_answer(self, answer: StudentAnswer, reveal: bool, now) -> None:
        question = answer.question
        answer.graded_by = None

        if not answer.has_payload():
            answer.score = 0.0
            answer.is_correct = False
            answer.is_graded = True
            answer.graded_at = now
            answer.feedback = NO_ANSWER_FEEDBACK
            return

        try:
            ratio, fully_correct = question_types.score(question.type, question.content, answer.answer)
        except GradingNotAllowed:
            self._mark_ungraded(answer, question_types.feedback(question.type, question.content, answer.answer, False))
            return
        except (AssessmentError, ValueError, TypeError, KeyError) as e:
            logger.warning("Could not auto-grade answer %s (question %s): %s", answer.id, question.id, e)
            self._mark_ungraded(answer, NOT_AUTO_GRADED_FEEDBACK)
            return

        answer.score = ratio * answer.max_score
        answer.is_correct = fully_correct
        answer.is_graded = True
        answer.graded_at = now
        answer.feedback = question_types.feedback(
            question.type, question.content, answer.answer, fully_correct, reveal=reveal
        )

    @staticmethod
    def _mark_ungraded(answer: StudentAnswer, feedback: str) -> None:
        answer.score = 0.0
        answer.is_correct = None
        answer.is_graded = False
        answer.graded_at = None
        answer.feedback = feedback

    # ===== manual grading =====

    def manual_grade_answer(
        self, answer_id: int, score: float, feedback: Optional[str], grader_id: str
    ) -> GradingResult:
        with transaction(self.session_factory) as db:
            answer = AnswerRepository(db).get(answer_id)
            attempt: StudentAttempt = answer.attempt
            assessments = AssessmentRepository(db)
            require_grader(db, grader_id, assessments.get(attempt.assessment_id), "grade")

            if not attempt.is_terminal:
                raise InvalidState(f"attempt {attempt.id} is still in progress", attempt_id=attempt.id)

            max_score = assessments.points_map(attempt.assessment_id).get(answer.question_id)
            if max_score is None:
                raise NotFound("assessment question", answer.question_id)
            if not math.isfinite(score) or not 0 <= score <= max_score:
                raise ValidationError(f"score must be between 0 and {max_score}", "score", score)

            answer.score = float(score)
            answer.max_score = max_score
            answer.feedback = feedback
            answer.graded_by = grader_id
            answer.graded_at = self.clock()
            answer.is_graded = True
            answer.is_correct = score == max_score
            db.flush()

            attempt_id = attempt.id
            result = _result(answer)

        logger.info("Answer %s graded manually by %s: %.2f/%d", answer_id, grader_id, score, max_score)
        self.queue.submit(f"finalize-attempt-{attempt_id}", self.finalize_if_complete, attempt_id)
        return result

    def finalize_if_complete(self, attempt_id: int) -> Optional[AttemptGradingResult]:
        """Recompute the attempt totals once nothing is left to grade by hand."""
        db = self.session_factory()
        try:
            ungraded = AnswerRepository(db).count_ungraded(attempt_id)
        finally:
            db.close()

        if ungraded:
            logger.debug("Attempt %s still has %d ungraded answers", attempt_id, ungraded)
            return None
        return self.auto_grade_attempt(attempt_id)

    # ===== bulk grading =====

    def _attempt_ids(self, assessment_id: int, statuses, user_id: Optional[str] = None, action: str = "grade") -> List[int]:
        db = self.session_factory()
        try:
            assessment = AssessmentRepository(db).get(assessment_id)
            if user_id is not None:
                require_grader(db, user_id, assessment, action)
            return [a.id for a in AttemptRepository(db).list_by_assessment(assessment_id, statuses)]
        finally:
            db.close()

    def _grade_each(self, attempt_ids: List[int], grade: Callable[[int], AttemptGradingResult]) -> Dict[int, AttemptGradingResult]:
        results = {}
        for attempt_id in attempt_ids:
            try:
                results[attempt_id] = grade(attempt_id)
            except Exception:
                logger.exception("Grading attempt %s failed, continuing with the rest", attempt_id)
        return results

    def auto_grade_assessment(self, assessment_id: int, user_id: Optional[str] = None) -> Dict[int, AttemptGradingResult]:
        attempt_ids = self._attempt_ids(assessment_id, [AttemptStatus.COMPLETED], user_id)
        results = self._grade_each(attempt_ids, self.auto_grade_attempt)
        logger.info("Auto-graded %d/%d attempts of assessment %s", len(results), len(attempt_ids), assessment_id)
        return results

    def regrade_assessment(self, assessment_id: int, user_id: str) -> Dict[int, AttemptGradingResult]:
        attempt_ids = self._attempt_ids(assessment_id, GRADABLE_STATUSES, user_id, action="regrade")
        results = self._grade_each(attempt_ids, self.auto_grade_attempt)
        logger.info("Regraded %d/%d attempts of assessment %s", len(results), len(attempt_ids), assessment_id)
        return results

    def regrade_question(self, question_id: int, user_id: str) -> Dict[int, AttemptGradingResult]:
        """Re-score one question everywhere it was answered, e.g. after its key was corrected."""
        db = self.session_factory()
        try:
            question = AssessmentRepository(db).get_question(question_id)
            role = UserRepository(db).get_role(user_id)
            if role not in GRADER_ROLES:
                raise PermissionDenied(user_id, "question", question_id, "regrade", f"role {role} cannot regrade")
            if role == ROLE_TEACHER and question.created_by != user_id:
                raise PermissionDenied(user_id, "question", question_id, "regrade", "not the author of this question")
            attempt_ids = AttemptRepository(db).ids_with_question(question_id, GRADABLE_STATUSES)
        finally:
            db.close()

        def regrade_one(attempt_id: int) -> AttemptGradingResult:
            with transaction(self.session_factory) as session:
                result = self._grade(session, attempt_id, only_question_id=question_id)
            notify(self.event_sink, result)
            return result

        results = self._grade_each(attempt_ids, regrade_one)
        logger.info("Regraded question %s in %d/%d attempts", question_id, len(results), len(attempt_ids))
        return results

    # ===== reporting =====

    def grading_overview(self, assessment_id: int, user_id: str) -> GradingOverview:
        db = self.session_factory()
        try:
            assessment = AssessmentRepository(db).get(assessment_id)
            require_grader(db, user_id, assessment, "view")
            attempts = AttemptRepository(db).list_by_assessment(assessment_id, GRADABLE_STATUSES)
        finally:
            db.close()

        graded = [a for a in attempts if a.is_graded]
        average = sum(a.percentage for a in graded) / len(graded) if graded else 0.0
        return GradingOverview(
            assessment_id=assessment_id,
            total_attempts=len(attempts),
            graded_attempts=len(graded),
            pending_manual_grading=len(attempts) - len(graded),
            average_percentage=round(average, 2),
        )
