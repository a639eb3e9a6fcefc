"""
Pure scoring algorithms, one per question type.

Each scorer takes the parsed content model and the parsed student answer and
returns a ScoreResult whose ratio lies in [0, 1]. Points are applied later by
the grading service, never here.
"""
from typing import Dict, List, NamedTuple

from .config import FUZZY_MATCH_THRESHOLD
from .content import (
    EssayContent,
    FillBlankContent,
    MatchingContent,
    MultipleChoiceContent,
    OrderingContent,
    ShortAnswerContent,
    TrueFalseContent,
)
from .errors import GradingNotAllowed


class ScoreResult(NamedTuple):
    ratio: float
    fully_correct: bool


NO_CREDIT = ScoreResult(0.0, False)
FULL_CREDIT = ScoreResult(1.0, True)


# ===== string helpers =====

def compare_strings(a: str, b: str, case_sensitive: bool = False, trim: bool = True) -> bool:
    if trim:
        a, b = a.strip(), b.strip()
    if not case_sensitive:
        a, b = a.lower(), b.lower()
    return a == b


def levenshtein_distance(s1: str, s2: str) -> int:
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def string_similarity(s1: str, s2: str) -> float:
    """Normalized Levenshtein similarity, case-insensitive and trimmed."""
    s1 = s1.strip().lower()
    s2 = s2.strip().lower()
    if s1 == s2:
        return 1.0

    max_len = max(len(s1), len(s2))
    return 1.0 - levenshtein_distance(s1, s2) / max_len


# ===== scorers =====

def score_multiple_choice(content: MultipleChoiceContent, answer: List[str]) -> ScoreResult:
    selected = set(answer)
    correct = set(content.correct_answers)

    if selected == correct:
        return FULL_CREDIT

    if len(correct) > 1:
        correct_selected = len(selected & correct)
        wrong = len(selected - correct) + len(correct - selected)
        ratio = (correct_selected - wrong) / len(correct)
        return ScoreResult(max(0.0, ratio), False)

    return NO_CREDIT


def score_true_false(content: TrueFalseContent, answer: bool) -> ScoreResult:
    return FULL_CREDIT if answer == content.correct_answer else NO_CREDIT


def score_fill_blank(content: FillBlankContent, answer: Dict[str, str]) -> ScoreResult:
    total_points = 0
    earned_points = 0
    all_correct = True

    for blank_id, blank in content.blanks.items():
        total_points += blank.points

        given = answer.get(blank_id)
        if given is None:
            all_correct = False
            continue

        if any(
            compare_strings(given, accepted, content.case_sensitive, content.trim_spaces)
            for accepted in blank.accepted_answers
        ):
            earned_points += blank.points
        else:
            all_correct = False

    if total_points == 0:
        return NO_CREDIT

    return ScoreResult(earned_points / total_points, all_correct)


def score_short_answer(content: ShortAnswerContent, answer: str) -> ScoreResult:
    for accepted in content.accepted_answers:
        if compare_strings(answer, accepted, content.case_sensitive):
            return FULL_CREDIT

    if content.fuzzy_matching and content.accepted_answers:
        best = max(string_similarity(answer, accepted) for accepted in content.accepted_answers)
        if best >= FUZZY_MATCH_THRESHOLD:
            return ScoreResult(best, False)

    return NO_CREDIT


def score_matching(content: MatchingContent, answer: Dict[str, str]) -> ScoreResult:
    total = len(content.correct_pairs)
    if total == 0:
        return NO_CREDIT

    correct = sum(1 for pair in content.correct_pairs if answer.get(pair.left_id) == pair.right_id)
    return ScoreResult(correct / total, correct == total)


def score_ordering(content: OrderingContent, answer: List[str]) -> ScoreResult:
    expected = content.correct_order
    if answer == expected:
        return FULL_CREDIT

    # only absolute positions count, a shifted but correctly ordered run earns nothing
    in_place = sum(
        1 for i, item_id in enumerate(answer)
        if i < len(expected) and item_id == expected[i]
    )
    return ScoreResult(in_place / len(content.items), False)


def score_essay(content: EssayContent, answer: str) -> ScoreResult:
    raise GradingNotAllowed("essay questions require manual grading")


# ===== feedback =====

def feedback_multiple_choice(content: MultipleChoiceContent, answer, fully_correct: bool, reveal: bool) -> str:
    if fully_correct:
        return "Correct! Well done."
    if not reveal:
        return "Incorrect answer."

    texts = {option.id: option.text for option in content.options}
    correct = [texts[option_id] for option_id in content.correct_answers if option_id in texts]
    if len(correct) == 1:
        return f"Incorrect. The correct answer is: {correct[0]}"
    return f"Incorrect. The correct answers are: {', '.join(correct)}"


def feedback_true_false(content: TrueFalseContent, answer, fully_correct: bool, reveal: bool) -> str:
    if fully_correct:
        return "Correct!"
    if not reveal:
        return "Incorrect answer."

    if content.correct_answer:
        label = content.true_label or "True"
    else:
        label = content.false_label or "False"
    return f"Incorrect. The correct answer is: {label}"


def feedback_fill_blank(content: FillBlankContent, answer, fully_correct: bool, reveal: bool) -> str:
    if fully_correct:
        return "All blanks filled correctly!"
    if not reveal:
        return "Some answers are incorrect. Please review your responses."

    expected = "; ".join(
        f"{blank_id}: {' / '.join(blank.accepted_answers)}"
        for blank_id, blank in content.blanks.items()
    )
    return f"Some answers are incorrect. Accepted answers are {expected}"


def feedback_short_answer(content: ShortAnswerContent, answer, fully_correct: bool, reveal: bool) -> str:
    if fully_correct:
        return "Correct answer!"
    if not reveal or not content.accepted_answers:
        return "Your answer doesn't match the expected response. Please review the question."
    return f"Your answer doesn't match the expected response. Expected: {content.accepted_answers[0]}"


def feedback_matching(content: MatchingContent, answer, fully_correct: bool, reveal: bool) -> str:
    if fully_correct:
        return "All items matched correctly!"
    if not reveal:
        return "Some matches are incorrect. Please review your pairings."

    left = {item.id: item.text for item in content.left_items}
    right = {item.id: item.text for item in content.right_items}
    pairs = ", ".join(
        f"{left.get(pair.left_id, pair.left_id)} -> {right.get(pair.right_id, pair.right_id)}"
        for pair in content.correct_pairs
    )
    return f"Some matches are incorrect. Correct pairs: {pairs}"


def feedback_ordering(content: OrderingContent, answer, fully_correct: bool, reveal: bool) -> str:
    if fully_correct:
        return "Perfect sequence!"
    if not reveal:
        return "The order is not completely correct. Please review the sequence."

    texts = {item.id: item.text for item in content.items}
    sequence = ", ".join(texts.get(item_id, item_id) for item_id in content.correct_order)
    return f"The order is not completely correct. Expected order: {sequence}"


def feedback_essay(content: EssayContent, answer, fully_correct: bool, reveal: bool) -> str:
    return "Essay questions require manual grading."


# ===== grade scale =====

LETTER_GRADES = [
    (97, "A+"), (93, "A"), (90, "A-"),
    (87, "B+"), (83, "B"), (80, "B-"),
    (77, "C+"), (73, "C"), (70, "C-"),
    (67, "D+"), (63, "D"), (60, "D-"),
]


def letter_grade(percentage: float) -> str:
    for threshold, grade in LETTER_GRADES:
        if percentage >= threshold:
            return grade
    return "F"
