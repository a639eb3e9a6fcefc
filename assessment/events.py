import logging
from typing import Protocol

from .schemas import AttemptGradingResult

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def attempt_graded(self, result: AttemptGradingResult) -> None:
        ...


class LoggingEventSink:
    def attempt_graded(self, result: AttemptGradingResult) -> None:
        logger.info(
            "attempt.graded attempt_id=%s score=%.2f/%.0f percentage=%.2f passed=%s complete=%s",
            result.attempt_id,
            result.total_score,
            result.max_score,
            result.percentage,
            result.passed,
            result.is_graded,
        )


def notify(sink: EventSink, result: AttemptGradingResult) -> None:
    """Fire-and-forget delivery; a failing sink never affects grading."""
    try:
        sink.attempt_graded(result)
    except Exception:
        logger.exception("Event sink failed for attempt %s", result.attempt_id)
