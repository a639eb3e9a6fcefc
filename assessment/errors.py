"""
Error taxonomy for the attempt lifecycle and grading engine.

Every error carries the HTTP status the API layer answers with, so routes
never translate exceptions one by one.
"""
from typing import Any, Optional


class AssessmentError(Exception):
    status_code = 400
    code = "assessment_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self):
        data = {"error": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class NotFound(AssessmentError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} {resource_id} not found", resource=resource, id=resource_id)


class PermissionDenied(AssessmentError):
    status_code = 403
    code = "permission_denied"

    def __init__(self, user_id: Any, resource: str, resource_id: Any, action: str, reason: str):
        super().__init__(
            f"user {user_id} cannot {action} {resource} {resource_id}: {reason}",
            user_id=user_id,
            resource=resource,
            id=resource_id,
            action=action,
        )


class InvalidState(AssessmentError):
    status_code = 409
    code = "invalid_state"


class AttemptCannotStart(InvalidState):
    code = "attempt_cannot_start"


class AttemptAlreadySubmitted(InvalidState):
    code = "attempt_already_submitted"


class TimeExpired(AssessmentError):
    status_code = 410
    code = "time_expired"


class GradingNotAllowed(AssessmentError):
    status_code = 422
    code = "grading_not_allowed"


class ValidationError(AssessmentError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        details = {}
        if field is not None:
            details["field"] = field
            details["value"] = value
        super().__init__(message, **details)


class PersistenceError(AssessmentError):
    status_code = 500
    code = "persistence_error"
