"""
Attempt lifecycle.

An attempt is created ``in_progress`` and ends exactly once, as
``completed``, ``abandoned`` or ``timeout``. Every operation that changes
an attempt first compares the clock with its deadline; an attempt found
past its deadline is timed out (and committed as such) before the caller
is told it was too late.
"""
import logging
from datetime import timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from db.models.assessments import STATUS_ACTIVE, Assessment
from db.models.student_answers import StudentAnswer
from db.models.student_attempts import (
    END_REASON_ABANDONED,
    END_REASON_COMPLETED,
    END_REASON_TIMEOUT,
    GRADABLE_STATUSES,
    AttemptStatus,
    StudentAttempt,
)

from . import question_types
from .clock import utcnow
from .config import MAX_EXTENSION_MINUTES
from .dispatcher import GradingQueue
from .errors import (
    AttemptAlreadySubmitted,
    AttemptCannotStart,
    InvalidState,
    NotFound,
    PermissionDenied,
    PersistenceError,
    TimeExpired,
    ValidationError,
)
from .grading_service import GradingService
from .permissions import can_view_attempt, require_grader, require_owner
from .randomization import SEED_OPTIONS, SEED_QUESTIONS, Randomizer
from .repository import AnswerRepository, AssessmentRepository, AttemptRepository, UserRepository, transaction
from .sanitizer import sanitize_questions
from .schemas import AnswerOut, AnswerSubmission, AttemptDetail, AttemptOut

logger = logging.getLogger(__name__)


def _seconds_left(attempt: StudentAttempt, now) -> int:
    if attempt.ended_at is None:
        return 0
    return max(0, int((attempt.ended_at - now).total_seconds()))


def _elapsed(attempt: StudentAttempt, now) -> int:
    if attempt.started_at is None:
        return 0
    return max(0, int((now - attempt.started_at).total_seconds()))


class AttemptService:
    def __init__(
        self,
        session_factory,
        randomizer: Randomizer,
        queue: GradingQueue,
        grader: GradingService,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.randomizer = randomizer
        self.queue = queue
        self.grader = grader
        self.clock = clock

    # ===== transitions =====

    def _finish(self, attempt: StudentAttempt, status: AttemptStatus, end_reason: str, now,
                time_spent: Optional[int] = None) -> None:
        attempt.status = status.value
        attempt.end_reason = end_reason
        attempt.completed_at = now
        attempt.time_spent = time_spent if time_spent is not None else _elapsed(attempt, now)
        attempt.time_remaining = 0

    def _after_finish(self, attempt_id: int, grade: bool) -> None:
        """Side effects of a committed terminal transition."""
        self.randomizer.clear_seeds(attempt_id)
        if grade:
            self.queue.submit(f"grade-attempt-{attempt_id}", self.grader.auto_grade_attempt, attempt_id)

    def _timed_out(self, attempt_id: int) -> TimeExpired:
        logger.info("Attempt %s passed its deadline, timed out", attempt_id)
        self._after_finish(attempt_id, grade=True)
        return TimeExpired(f"time for attempt {attempt_id} has expired", attempt_id=attempt_id)

    # ===== start =====

    def _start_blocker(self, db, assessment: Assessment, student_id: str, now) -> Optional[str]:
        if assessment.status != STATUS_ACTIVE:
            return f"assessment is {assessment.status}"
        if assessment.due_date is not None and now > assessment.due_date:
            return "assessment is past its due date"
        used = AttemptRepository(db).count_for_student(student_id, assessment.id)
        if used >= assessment.max_attempts:
            return f"all {assessment.max_attempts} attempts used"
        return None

    def can_start(self, assessment_id: int, student_id: str) -> bool:
        db = self.session_factory()
        try:
            assessment = AssessmentRepository(db).get(assessment_id)
            return self._start_blocker(db, assessment, student_id, self.clock()) is None
        finally:
            db.close()

    def _expire_stale(self, assessment_id: int, student_id: str) -> None:
        with transaction(self.session_factory) as db:
            active = AttemptRepository(db).get_active(student_id, assessment_id)
            now = self.clock()
            if active is None or not active.is_expired(now):
                return
            self._finish(active, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, now)
            stale_id = active.id
        logger.info("Stale attempt %s timed out before a new start", stale_id)
        self._after_finish(stale_id, grade=True)

    def start(
        self,
        assessment_id: int,
        student_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_data: Optional[dict] = None,
    ) -> AttemptOut:
        self._expire_stale(assessment_id, student_id)

        try:
            with transaction(self.session_factory) as db:
                attempts = AttemptRepository(db)
                assessments = AssessmentRepository(db)
                assessment = assessments.get(assessment_id)
                now = self.clock()

                active = attempts.get_active(student_id, assessment_id)
                if active is not None:
                    logger.info("Student %s resumes attempt %s", student_id, active.id)
                    return AttemptOut.model_validate(active)

                reason = self._start_blocker(db, assessment, student_id, now)
                if reason is not None:
                    raise AttemptCannotStart(
                        f"cannot start assessment {assessment_id}: {reason}",
                        assessment_id=assessment_id,
                        student_id=student_id,
                    )

                bindings = assessments.questions(assessment_id)
                attempt = attempts.create(
                    StudentAttempt(
                        assessment_id=assessment_id,
                        student_id=student_id,
                        attempt_number=attempts.count_for_student(student_id, assessment_id) + 1,
                        status=AttemptStatus.IN_PROGRESS.value,
                        started_at=now,
                        ended_at=now + timedelta(minutes=assessment.duration),
                        time_remaining=assessment.duration * 60,
                        total_questions=len(bindings),
                        ip_address=ip_address,
                        user_agent=user_agent,
                        session_data=session_data,
                    )
                )
                AnswerRepository(db).create_batch(
                    [
                        StudentAnswer(
                            attempt_id=attempt.id,
                            question_id=binding.question_id,
                            max_score=binding.points,
                            answer_history=[],
                        )
                        for binding in bindings
                    ]
                )
                out = AttemptOut.model_validate(attempt)
                seeds = [
                    seed_type
                    for seed_type, enabled in (
                        (SEED_QUESTIONS, assessment.randomize_questions),
                        (SEED_OPTIONS, assessment.randomize_options),
                    )
                    if enabled
                ]
                duration = assessment.duration
        except PersistenceError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # a concurrent start won the race for the active slot
            logger.info("Concurrent start for student %s on assessment %s, using the winner", student_id, assessment_id)
            return self.get_current_attempt(assessment_id, student_id)

        for seed_type in seeds:
            self.randomizer.ensure_seed(out.id, seed_type, duration)

        logger.info(
            "Student %s started attempt %s (#%d) on assessment %s",
            student_id,
            out.id,
            out.attempt_number,
            assessment_id,
        )
        return out

    # ===== in-progress operations =====

    def _lock_active(self, db, attempt_id: int, student_id: str, action: str) -> StudentAttempt:
        attempt = AttemptRepository(db).get(attempt_id, for_update=True)
        require_owner(attempt, student_id, action)
        if attempt.is_terminal:
            raise InvalidState(f"attempt {attempt_id} is {attempt.status}", attempt_id=attempt_id)
        return attempt

    def resume(self, attempt_id: int, student_id: str) -> AttemptOut:
        with transaction(self.session_factory) as db:
            attempt = self._lock_active(db, attempt_id, student_id, "resume")
            now = self.clock()
            expired = attempt.is_expired(now)
            if expired:
                self._finish(attempt, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, now)
            else:
                attempt.time_remaining = _seconds_left(attempt, now)
                out = AttemptOut.model_validate(attempt)
        if expired:
            raise self._timed_out(attempt_id)
        return out

    def _upsert_answer(
        self,
        db,
        attempt: StudentAttempt,
        points: dict,
        question_id: int,
        payload,
        time_spent: Optional[int],
        flagged: Optional[bool],
        now,
    ) -> StudentAnswer:
        if question_id not in points:
            raise NotFound("assessment question", question_id)

        answers = AnswerRepository(db)
        answer = answers.by_attempt_and_question(attempt.id, question_id)
        if answer is None:
            answer = StudentAnswer(
                attempt_id=attempt.id,
                question_id=question_id,
                max_score=points[question_id],
                answer_history=[],
            )
            answers.create_batch([answer])

        if payload not in (None, "", [], {}):
            question = AssessmentRepository(db).get_question(question_id)
            question_types.parse_answer(question.type, payload)

        if answer.has_payload():
            stamp = answer.last_modified_at or now
            # reassigned so the JSON column registers the change
            answer.answer_history = list(answer.answer_history or []) + [
                {"answer": answer.answer, "answered_at": stamp.isoformat()}
            ]

        answer.answer = payload
        if answer.first_answered_at is None:
            answer.first_answered_at = now
        answer.last_modified_at = now
        if time_spent:
            answer.time_spent = (answer.time_spent or 0) + time_spent
        if flagged is not None:
            answer.flagged = flagged
        answers.update_batch([answer])
        return answer

    def _refresh_progress(self, db, attempt: StudentAttempt, question_id: Optional[int] = None) -> None:
        attempt.questions_answered = AnswerRepository(db).count_answered(attempt.id)
        if question_id is not None:
            order = [b.question_id for b in AssessmentRepository(db).questions(attempt.assessment_id)]
            if question_id in order:
                attempt.current_question_index = order.index(question_id)

    def submit_answer(
        self,
        attempt_id: int,
        student_id: str,
        question_id: int,
        payload,
        time_spent: Optional[int] = None,
        flagged: Optional[bool] = None,
    ) -> AnswerOut:
        with transaction(self.session_factory) as db:
            attempt = self._lock_active(db, attempt_id, student_id, "answer")
            now = self.clock()
            expired = attempt.is_expired(now)
            if expired:
                self._finish(attempt, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, now)
            else:
                points = AssessmentRepository(db).points_map(attempt.assessment_id)
                answer = self._upsert_answer(db, attempt, points, question_id, payload, time_spent, flagged, now)
                self._refresh_progress(db, attempt, question_id)
                attempt.time_remaining = _seconds_left(attempt, now)
                out = AnswerOut.model_validate(answer)
        if expired:
            raise self._timed_out(attempt_id)
        return out

    def submit(
        self,
        attempt_id: int,
        student_id: str,
        answers: Iterable[AnswerSubmission] = (),
        time_spent: Optional[int] = None,
        end_reason: Optional[str] = None,
    ) -> AttemptOut:
        with transaction(self.session_factory) as db:
            attempt = AttemptRepository(db).get(attempt_id, for_update=True)
            require_owner(attempt, student_id, "submit")
            if attempt.is_terminal:
                raise AttemptAlreadySubmitted(
                    f"attempt {attempt_id} is already {attempt.status}", attempt_id=attempt_id
                )

            now = self.clock()
            expired = attempt.is_expired(now)
            if expired:
                self._finish(attempt, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, now)
            else:
                points = AssessmentRepository(db).points_map(attempt.assessment_id)
                for submission in answers:
                    self._upsert_answer(
                        db,
                        attempt,
                        points,
                        submission.question_id,
                        submission.answer,
                        submission.time_spent,
                        submission.flagged,
                        now,
                    )
                self._refresh_progress(db, attempt)
                self._finish(attempt, AttemptStatus.COMPLETED, end_reason or END_REASON_COMPLETED, now, time_spent)
                out = AttemptOut.model_validate(attempt)
        if expired:
            raise self._timed_out(attempt_id)

        logger.info("Attempt %s submitted by %s (%d answered)", attempt_id, student_id, out.questions_answered)
        self._after_finish(attempt_id, grade=True)
        return out

    def abandon(self, attempt_id: int, student_id: str) -> AttemptOut:
        with transaction(self.session_factory) as db:
            attempt = self._lock_active(db, attempt_id, student_id, "abandon")
            now = self.clock()
            expired = attempt.is_expired(now)
            if expired:
                self._finish(attempt, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, now)
            else:
                self._finish(attempt, AttemptStatus.ABANDONED, END_REASON_ABANDONED, now)
                out = AttemptOut.model_validate(attempt)
        if expired:
            raise self._timed_out(attempt_id)

        logger.info("Attempt %s abandoned by %s", attempt_id, student_id)
        self._after_finish(attempt_id, grade=False)
        return out

    def handle_timeout(self, attempt_id: int) -> AttemptOut:
        with transaction(self.session_factory) as db:
            attempt = AttemptRepository(db).get(attempt_id, for_update=True)
            timed_out = not attempt.is_terminal
            if timed_out:
                self._finish(attempt, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, self.clock())
            out = AttemptOut.model_validate(attempt)

        if timed_out:
            logger.info("Attempt %s timed out", attempt_id)
            self._after_finish(attempt_id, grade=True)
        return out

    def expire_overdue(self) -> List[int]:
        """Time out every in-progress attempt already past its deadline."""
        db = self.session_factory()
        try:
            overdue = AttemptRepository(db).overdue_ids(self.clock())
        finally:
            db.close()

        for attempt_id in overdue:
            self.handle_timeout(attempt_id)
        if overdue:
            logger.info("Timed out %d overdue attempts", len(overdue))
        return overdue

    def extend_time(self, attempt_id: int, minutes: int, user_id: str) -> AttemptOut:
        if minutes is None or not 0 < minutes <= MAX_EXTENSION_MINUTES:
            raise ValidationError(
                f"extension must be between 1 and {MAX_EXTENSION_MINUTES} minutes", "minutes", minutes
            )

        with transaction(self.session_factory) as db:
            attempt = AttemptRepository(db).get(attempt_id, for_update=True)
            require_grader(db, user_id, AssessmentRepository(db).get(attempt.assessment_id), "extend")
            if attempt.is_terminal:
                raise InvalidState(f"attempt {attempt_id} is {attempt.status}", attempt_id=attempt_id)

            now = self.clock()
            expired = attempt.is_expired(now)
            if expired:
                self._finish(attempt, AttemptStatus.TIMED_OUT, END_REASON_TIMEOUT, now)
            else:
                attempt.ended_at = attempt.ended_at + timedelta(minutes=minutes)
                attempt.time_remaining = _seconds_left(attempt, now)
                out = AttemptOut.model_validate(attempt)
        if expired:
            raise self._timed_out(attempt_id)

        self.randomizer.refresh_seeds(attempt_id, out.time_remaining)
        logger.info("Attempt %s extended by %d minutes by %s", attempt_id, minutes, user_id)
        return out

    # ===== reads =====

    def get_time_remaining(self, attempt_id: int, student_id: str) -> int:
        db = self.session_factory()
        try:
            attempt = AttemptRepository(db).get(attempt_id)
            require_owner(attempt, student_id, "view")
            if attempt.is_terminal:
                raise InvalidState(f"attempt {attempt_id} is {attempt.status}", attempt_id=attempt_id)
            return _seconds_left(attempt, self.clock())
        finally:
            db.close()

    def get_current_attempt(self, assessment_id: int, student_id: str) -> AttemptOut:
        db = self.session_factory()
        try:
            attempt = AttemptRepository(db).get_active(student_id, assessment_id)
            if attempt is None:
                raise NotFound("active attempt for assessment", assessment_id)
            return AttemptOut.model_validate(attempt)
        finally:
            db.close()

    def list_attempts(self, assessment_id: int, user_id: str) -> List[AttemptOut]:
        db = self.session_factory()
        try:
            assessment = AssessmentRepository(db).get(assessment_id)
            require_grader(db, user_id, assessment, "list attempts of")
            return [AttemptOut.model_validate(a) for a in AttemptRepository(db).list_by_assessment(assessment_id)]
        finally:
            db.close()

    def get_attempt_details(self, attempt_id: int, user_id: str) -> AttemptDetail:
        db = self.session_factory()
        try:
            attempt = AttemptRepository(db).get(attempt_id)
            assessments = AssessmentRepository(db)
            assessment = assessments.get(attempt.assessment_id)
            role = UserRepository(db).get_role(user_id)
            if not can_view_attempt(role, user_id, attempt, assessment):
                raise PermissionDenied(user_id, "attempt", attempt_id, "view", "no access to this attempt")

            questions = []
            for binding in assessments.questions(attempt.assessment_id):
                question = binding.question.to_dict()
                question["points"] = binding.points
                question["order"] = binding.order
                questions.append(question)

            answers = [AnswerOut.model_validate(a) for a in AnswerRepository(db).by_attempt(attempt_id)]
            base = AttemptOut.model_validate(attempt)
            in_progress = not attempt.is_terminal
            reviewable = assessment.show_correct_answers and attempt.status in {s.value for s in GRADABLE_STATUSES}
            owner = attempt.student_id == user_id
            shuffle_flags = (assessment.randomize_questions, assessment.randomize_options)
            can_submit = in_progress and owner and not attempt.is_expired(self.clock())
        finally:
            db.close()

        if in_progress or not reviewable:
            questions = sanitize_questions(questions)
        if in_progress and owner:
            questions = self.randomizer.apply(attempt_id, questions, *shuffle_flags)

        return AttemptDetail(**base.model_dump(), can_submit=can_submit, questions=questions, answers=answers)
