"""Role checks shared by the attempt and grading services."""
from sqlalchemy.orm import Session

from db.models.assessments import Assessment
from db.models.student_attempts import StudentAttempt
from db.models.users import GRADER_ROLES, ROLE_ADMIN, ROLE_TEACHER

from .errors import PermissionDenied
from .repository import UserRepository


def require_owner(attempt: StudentAttempt, student_id: str, action: str) -> None:
    if attempt.student_id != student_id:
        raise PermissionDenied(student_id, "attempt", attempt.id, action, "not the owner of this attempt")


def require_grader(db: Session, user_id: str, assessment: Assessment, action: str) -> str:
    """Teachers may act on assessments they created, admins on all of them."""
    role = UserRepository(db).get_role(user_id)
    if role not in GRADER_ROLES:
        raise PermissionDenied(user_id, "assessment", assessment.id, action, f"role {role} cannot {action}")
    if role == ROLE_TEACHER and assessment.created_by != user_id:
        raise PermissionDenied(user_id, "assessment", assessment.id, action, "not the creator of this assessment")
    return role


def can_view_attempt(role: str, user_id: str, attempt: StudentAttempt, assessment: Assessment) -> bool:
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_TEACHER:
        return assessment.created_by == user_id
    return attempt.student_id == user_id
