import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from assessment.attempt_service import AttemptService
from assessment.cache import RedisCache
from assessment.config import LOG_LEVEL
from assessment.dispatcher import GradingQueue
from assessment.errors import AssessmentError
from assessment.grading_service import GradingService
from assessment.randomization import Randomizer
from assessment.schemas import (
    AnswerOut,
    AnswerSubmission,
    AttemptDetail,
    AttemptGradingResult,
    AttemptOut,
    ExtendTimeRequest,
    GradingOverview,
    GradingResult,
    ManualGradeRequest,
    StartAttemptRequest,
    SubmitAttemptRequest,
)
from auth.dependencies import get_current_grader, get_current_student, get_current_user
from db.database import SessionLocal, engine
from db.init_db import init_db
from db.models.users import User

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Assessment Attempt API",
    version="1.0.0",
    description="Attempt lifecycle, randomized delivery and auto-grading for assessments.",
)

# ============ services ============

grading_queue = GradingQueue()
randomizer = Randomizer(RedisCache())
grading_service = GradingService(SessionLocal, grading_queue)
attempt_service = AttemptService(SessionLocal, randomizer, grading_queue, grading_service)


def get_attempt_service() -> AttemptService:
    return attempt_service


def get_grading_service() -> GradingService:
    return grading_service


@app.on_event("startup")
def create_tables():
    init_db(engine)


@app.on_event("shutdown")
def stop_grading_queue():
    grading_queue.close()


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def _graded_batch(assessment_id: int, results: Dict[int, AttemptGradingResult]) -> Dict[str, Any]:
    return {
        "assessment_id": assessment_id,
        "graded": len(results),
        "results": list(results.values()),
    }


# ============ student: attempt lifecycle ============

@app.post("/assessments/{assessment_id}/attempts", response_model=AttemptOut)
def start_attempt(
    assessment_id: int,
    request: Request,
    body: Optional[StartAttemptRequest] = None,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.start(
        assessment_id,
        student.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        session_data=body.session_data if body else None,
    )


@app.get("/assessments/{assessment_id}/attempts/current", response_model=AttemptOut)
def current_attempt(
    assessment_id: int,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.get_current_attempt(assessment_id, student.id)


@app.get("/assessments/{assessment_id}/can-start")
def can_start(
    assessment_id: int,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return {"assessment_id": assessment_id, "can_start": service.can_start(assessment_id, student.id)}


@app.get("/attempts/{attempt_id}", response_model=AttemptDetail)
def attempt_details(
    attempt_id: int,
    user: User = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.get_attempt_details(attempt_id, user.id)


@app.post("/attempts/{attempt_id}/resume", response_model=AttemptOut)
def resume_attempt(
    attempt_id: int,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.resume(attempt_id, student.id)


@app.put("/attempts/{attempt_id}/answers", response_model=AnswerOut)
def save_answer(
    attempt_id: int,
    body: AnswerSubmission,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.submit_answer(
        attempt_id, student.id, body.question_id, body.answer, time_spent=body.time_spent, flagged=body.flagged
    )


@app.post("/attempts/{attempt_id}/submit", response_model=AttemptOut)
def submit_attempt(
    attempt_id: int,
    body: Optional[SubmitAttemptRequest] = None,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    body = body or SubmitAttemptRequest()
    return service.submit(
        attempt_id, student.id, body.answers, time_spent=body.time_spent, end_reason=body.end_reason
    )


@app.post("/attempts/{attempt_id}/abandon", response_model=AttemptOut)
def abandon_attempt(
    attempt_id: int,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.abandon(attempt_id, student.id)


@app.get("/attempts/{attempt_id}/time-remaining")
def time_remaining(
    attempt_id: int,
    student: User = Depends(get_current_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return {"attempt_id": attempt_id, "time_remaining": service.get_time_remaining(attempt_id, student.id)}


# ============ teacher / admin ============

@app.post("/attempts/{attempt_id}/extend", response_model=AttemptOut)
def extend_attempt(
    attempt_id: int,
    body: ExtendTimeRequest,
    grader: User = Depends(get_current_grader),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.extend_time(attempt_id, body.minutes, grader.id)


@app.get("/assessments/{assessment_id}/attempts", response_model=List[AttemptOut])
def list_attempts(
    assessment_id: int,
    grader: User = Depends(get_current_grader),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.list_attempts(assessment_id, grader.id)


@app.post("/answers/{answer_id}/grade", response_model=GradingResult)
def grade_answer(
    answer_id: int,
    body: ManualGradeRequest,
    grader: User = Depends(get_current_grader),
    service: GradingService = Depends(get_grading_service),
):
    return service.manual_grade_answer(answer_id, body.score, body.feedback, grader.id)


@app.post("/attempts/{attempt_id}/grade", response_model=AttemptGradingResult)
def grade_attempt(
    attempt_id: int,
    grader: User = Depends(get_current_grader),
    service: GradingService = Depends(get_grading_service),
):
    return service.grade_attempt(attempt_id, grader.id)


@app.post("/assessments/{assessment_id}/grade")
def grade_assessment(
    assessment_id: int,
    grader: User = Depends(get_current_grader),
    service: GradingService = Depends(get_grading_service),
):
    return _graded_batch(assessment_id, service.auto_grade_assessment(assessment_id, grader.id))


@app.post("/assessments/{assessment_id}/regrade")
def regrade_assessment(
    assessment_id: int,
    grader: User = Depends(get_current_grader),
    service: GradingService = Depends(get_grading_service),
):
    return _graded_batch(assessment_id, service.regrade_assessment(assessment_id, grader.id))


@app.post("/questions/{question_id}/regrade")
def regrade_question(
    question_id: int,
    grader: User = Depends(get_current_grader),
    service: GradingService = Depends(get_grading_service),
):
    results = service.regrade_question(question_id, grader.id)
    return {"question_id": question_id, "regraded": len(results), "results": list(results.values())}


@app.get("/assessments/{assessment_id}/grading-overview", response_model=GradingOverview)
def grading_overview(
    assessment_id: int,
    grader: User = Depends(get_current_grader),
    service: GradingService = Depends(get_grading_service),
):
    return service.grading_overview(assessment_id, grader.id)
