"""
Strips correctness data from questions shown to a student mid-attempt.

Whether a question may be shown unsanitized (review mode) is decided by the
caller; this module only removes.
"""
import copy
from typing import Any, Dict, Iterable, List

from .question_types import get_handler

# fields carrying answers regardless of type
COMMON_CORRECTNESS_FIELDS = ("explanation",)


def _remove_path(data: Any, parts: List[str]) -> None:
    if not isinstance(data, dict) or not parts:
        return

    head, rest = parts[0], parts[1:]
    if head == "*":
        targets = list(data.values())
    elif head in data:
        if not rest:
            del data[head]
            return
        targets = [data[head]]
    else:
        return

    for target in targets:
        if rest:
            _remove_path(target, rest)


def sanitize_content(question_type, content: Dict[str, Any]) -> Dict[str, Any]:
    sanitized = copy.deepcopy(content) if content is not None else None
    handler = get_handler(question_type)
    if handler is None or not isinstance(sanitized, dict):
        return sanitized

    for path in handler.correctness_fields:
        _remove_path(sanitized, path.split("."))
    return sanitized


def sanitize_question(question: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy of ``question`` without any correct-answer field."""
    sanitized = copy.deepcopy(question)
    for field in COMMON_CORRECTNESS_FIELDS:
        sanitized.pop(field, None)
    if "content" in sanitized:
        sanitized["content"] = sanitize_content(sanitized.get("type"), sanitized["content"])
    return sanitized


def sanitize_questions(questions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [sanitize_question(q) for q in questions]
