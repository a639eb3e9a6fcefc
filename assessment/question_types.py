"""
Registry of question types.

Every question type is declared exactly once below: its content schema, the
shape of a student answer, its scorer and feedback builder, the content
fields that carry correctness data, and the list fields that may be
shuffled for a student. Adding a question type means adding one entry to
REGISTRY.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, StrictBool, StrictStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from . import scoring_engine as engine
from .content import (
    EssayContent,
    FillBlankContent,
    MatchingContent,
    MultipleChoiceContent,
    OrderingContent,
    QuestionType,
    ShortAnswerContent,
    TrueFalseContent,
)
from .errors import ValidationError
from .scoring_engine import ScoreResult


@dataclass(frozen=True)
class QuestionTypeHandler:
    type: QuestionType
    content_model: Type[BaseModel]
    answer_adapter: TypeAdapter
    scorer: Callable[[Any, Any], ScoreResult]
    feedback: Callable[[Any, Any, bool, bool], str]
    # dotted paths, "*" matches every key of a mapping
    correctness_fields: Tuple[str, ...]
    shuffle_fields: Tuple[str, ...] = ()
    auto_gradeable: bool = True
    normalize_answer: Optional[Callable[[Any], Any]] = None


def _as_list(value: Union[str, List[str]]) -> List[str]:
    return [value] if isinstance(value, str) else list(value)


REGISTRY: Dict[QuestionType, QuestionTypeHandler] = {
    handler.type: handler
    for handler in (
        QuestionTypeHandler(
            type=QuestionType.MULTIPLE_CHOICE,
            content_model=MultipleChoiceContent,
            answer_adapter=TypeAdapter(Union[List[StrictStr], StrictStr]),
            normalize_answer=_as_list,
            scorer=engine.score_multiple_choice,
            feedback=engine.feedback_multiple_choice,
            correctness_fields=("correct_answers",),
            shuffle_fields=("options",),
        ),
        QuestionTypeHandler(
            type=QuestionType.TRUE_FALSE,
            content_model=TrueFalseContent,
            answer_adapter=TypeAdapter(StrictBool),
            scorer=engine.score_true_false,
            feedback=engine.feedback_true_false,
            correctness_fields=("correct_answer",),
        ),
        QuestionTypeHandler(
            type=QuestionType.ESSAY,
            content_model=EssayContent,
            answer_adapter=TypeAdapter(StrictStr),
            scorer=engine.score_essay,
            feedback=engine.feedback_essay,
            correctness_fields=("sample_answer", "key_words"),
            auto_gradeable=False,
        ),
        QuestionTypeHandler(
            type=QuestionType.FILL_BLANK,
            content_model=FillBlankContent,
            answer_adapter=TypeAdapter(Dict[str, StrictStr]),
            scorer=engine.score_fill_blank,
            feedback=engine.feedback_fill_blank,
            correctness_fields=("blanks.*.accepted_answers",),
        ),
        QuestionTypeHandler(
            type=QuestionType.MATCHING,
            content_model=MatchingContent,
            answer_adapter=TypeAdapter(Dict[str, StrictStr]),
            scorer=engine.score_matching,
            feedback=engine.feedback_matching,
            correctness_fields=("correct_pairs",),
            shuffle_fields=("right_items",),
        ),
        QuestionTypeHandler(
            type=QuestionType.ORDERING,
            content_model=OrderingContent,
            answer_adapter=TypeAdapter(List[StrictStr]),
            scorer=engine.score_ordering,
            feedback=engine.feedback_ordering,
            correctness_fields=("correct_order",),
            shuffle_fields=("items",),
        ),
        QuestionTypeHandler(
            type=QuestionType.SHORT_ANSWER,
            content_model=ShortAnswerContent,
            answer_adapter=TypeAdapter(StrictStr),
            scorer=engine.score_short_answer,
            feedback=engine.feedback_short_answer,
            correctness_fields=("accepted_answers",),
        ),
    )
}


def get_handler(question_type) -> Optional[QuestionTypeHandler]:
    try:
        return REGISTRY.get(QuestionType(question_type))
    except ValueError:
        return None


def _require_handler(question_type) -> QuestionTypeHandler:
    handler = get_handler(question_type)
    if handler is None:
        raise ValidationError(f"unsupported question type: {question_type}", "type", question_type)
    return handler


def is_auto_gradeable(question_type) -> bool:
    handler = get_handler(question_type)
    return handler is not None and handler.auto_gradeable


def parse_content(question_type, content: dict) -> BaseModel:
    handler = _require_handler(question_type)
    try:
        return handler.content_model.model_validate(content or {})
    except PydanticValidationError as e:
        raise ValidationError(f"invalid {handler.type.value} content: {e.error_count()} error(s)", "content") from e


def parse_answer(question_type, answer: Any) -> Any:
    handler = _require_handler(question_type)
    try:
        value = handler.answer_adapter.validate_python(answer)
    except PydanticValidationError as e:
        raise ValidationError(f"invalid {handler.type.value} answer", "answer", answer) from e
    if handler.normalize_answer is not None:
        value = handler.normalize_answer(value)
    return value


def score(question_type, content: dict, answer: Any) -> ScoreResult:
    """Score one answer; raises GradingNotAllowed for manual-only types."""
    handler = _require_handler(question_type)
    return handler.scorer(parse_content(handler.type, content), parse_answer(handler.type, answer))


def feedback(question_type, content: dict, answer: Any, fully_correct: bool, reveal: bool = False) -> str:
    handler = _require_handler(question_type)
    return handler.feedback(parse_content(handler.type, content), answer, fully_correct, reveal)
