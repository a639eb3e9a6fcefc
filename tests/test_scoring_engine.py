"""
Test: per-type scoring, feedback and the question type registry.
"""
import pytest

from assessment import question_types
from assessment.content import FillBlankContent, MultipleChoiceContent, ShortAnswerContent
from assessment.errors import GradingNotAllowed, ValidationError
from assessment.scoring_engine import (
    letter_grade,
    levenshtein_distance,
    score_fill_blank,
    score_multiple_choice,
    score_short_answer,
    string_similarity,
)

from conftest import MC_CONTENT

MATCHING_CONTENT = {
    "left_items": [{"id": "l1", "text": "H2O"}, {"id": "l2", "text": "NaCl"}],
    "right_items": [{"id": "r1", "text": "Water"}, {"id": "r2", "text": "Salt"}],
    "correct_pairs": [{"left_id": "l1", "right_id": "r1"}, {"left_id": "l2", "right_id": "r2"}],
}

ORDERING_CONTENT = {
    "items": [{"id": "1", "text": "one"}, {"id": "2", "text": "two"}, {"id": "3", "text": "three"}, {"id": "4", "text": "four"}],
    "correct_order": ["1", "2", "3", "4"],
}


class TestMultipleChoice:
    def test_single_correct_selection(self):
        assert question_types.score("multiple_choice", MC_CONTENT, ["a"]) == (1.0, True)

    @pytest.mark.parametrize("choice", ["b", "c", "d"])
    def test_any_other_single_selection(self, choice):
        assert question_types.score("multiple_choice", MC_CONTENT, [choice]) == (0.0, False)

    def test_bare_string_answer(self):
        assert question_types.score("multiple_choice", MC_CONTENT, "a") == (1.0, True)

    def test_partial_credit_with_several_correct(self):
        content = MultipleChoiceContent(**{**MC_CONTENT, "correct_answers": ["a", "b", "c"]})
        # 2 right, 1 missed -> (2 - 1) / 3
        ratio, correct = score_multiple_choice(content, ["a", "b"])
        assert ratio == pytest.approx(1 / 3)
        assert not correct

    def test_partial_credit_never_negative(self):
        content = MultipleChoiceContent(**{**MC_CONTENT, "correct_answers": ["a", "b"]})
        assert score_multiple_choice(content, ["c", "d"]) == (0.0, False)

    def test_exact_set_with_several_correct(self):
        content = MultipleChoiceContent(**{**MC_CONTENT, "correct_answers": ["a", "b"]})
        assert score_multiple_choice(content, ["b", "a"]) == (1.0, True)


class TestTrueFalse:
    def test_match(self):
        assert question_types.score("true_false", {"correct_answer": False}, False) == (1.0, True)

    def test_mismatch(self):
        assert question_types.score("true_false", {"correct_answer": False}, True) == (0.0, False)

    def test_string_is_not_a_boolean(self):
        with pytest.raises(ValidationError):
            question_types.score("true_false", {"correct_answer": True}, "true")


class TestFillBlank:
    content = FillBlankContent(
        template="{b1} plus {b2}",
        blanks={
            "b1": {"accepted_answers": ["two"], "points": 2},
            "b2": {"accepted_answers": ["three", "3"], "points": 3},
        },
    )

    def test_all_blanks_correct(self):
        assert score_fill_blank(self.content, {"b1": "two", "b2": "3"}) == (1.0, True)

    def test_weighted_partial(self):
        ratio, correct = score_fill_blank(self.content, {"b1": "two", "b2": "four"})
        assert ratio == pytest.approx(2 / 5)
        assert not correct

    def test_missing_blank(self):
        ratio, correct = score_fill_blank(self.content, {"b2": "three"})
        assert ratio == pytest.approx(3 / 5)
        assert not correct

    def test_trim_and_case(self):
        assert score_fill_blank(self.content, {"b1": "  TWO ", "b2": "Three"}) == (1.0, True)

    def test_case_sensitive(self):
        content = self.content.model_copy(update={"case_sensitive": True})
        ratio, _ = score_fill_blank(content, {"b1": "TWO", "b2": "three"})
        assert ratio == pytest.approx(3 / 5)

    def test_zero_points(self):
        content = FillBlankContent(template="{b1}", blanks={"b1": {"accepted_answers": ["x"], "points": 0}})
        assert score_fill_blank(content, {"b1": "x"}) == (0.0, False)


class TestShortAnswer:
    def test_exact_case_insensitive(self):
        content = ShortAnswerContent(accepted_answers=["Mitochondria"])
        assert score_short_answer(content, "mitochondria") == (1.0, True)

    def test_case_sensitive_mismatch(self):
        content = ShortAnswerContent(accepted_answers=["Mitochondria"], case_sensitive=True)
        assert score_short_answer(content, "mitochondria") == (0.0, False)

    def test_one_edit_on_ten_characters(self):
        content = ShortAnswerContent(accepted_answers=["abcdefghij"], fuzzy_matching=True)
        ratio, correct = score_short_answer(content, "abcdefghix")
        assert ratio == pytest.approx(0.9)
        assert not correct

    def test_too_far_for_fuzzy(self):
        content = ShortAnswerContent(accepted_answers=["abcdefghij"], fuzzy_matching=True)
        assert score_short_answer(content, "abcdefxxxx") == (0.0, False)

    def test_fuzzy_disabled(self):
        content = ShortAnswerContent(accepted_answers=["abcdefghij"])
        assert score_short_answer(content, "abcdefghix") == (0.0, False)


class TestMatchingAndOrdering:
    def test_all_pairs(self):
        assert question_types.score("matching", MATCHING_CONTENT, {"l1": "r1", "l2": "r2"}) == (1.0, True)

    def test_half_the_pairs(self):
        assert question_types.score("matching", MATCHING_CONTENT, {"l1": "r1", "l2": "r1"}) == (0.5, False)

    def test_exact_order(self):
        assert question_types.score("ordering", ORDERING_CONTENT, ["1", "2", "3", "4"]) == (1.0, True)

    def test_positions_only(self):
        assert question_types.score("ordering", ORDERING_CONTENT, ["1", "3", "2", "4"]) == (0.5, False)

    def test_shifted_sequence_earns_nothing(self):
        assert question_types.score("ordering", ORDERING_CONTENT, ["4", "1", "2", "3"]) == (0.0, False)


class TestRegistry:
    def test_essay_needs_a_human(self):
        with pytest.raises(GradingNotAllowed):
            question_types.score("essay", {}, "My essay")
        assert not question_types.is_auto_gradeable("essay")

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            question_types.score("hotspot", {}, "x")

    def test_malformed_content(self):
        with pytest.raises(ValidationError):
            question_types.score("multiple_choice", {"options": []}, ["a"])

    def test_malformed_answer(self):
        with pytest.raises(ValidationError):
            question_types.score("ordering", ORDERING_CONTENT, "1,2,3,4")


class TestFeedback:
    def test_hidden_without_reveal(self):
        text = question_types.feedback("multiple_choice", MC_CONTENT, ["b"], False)
        assert "Paris" not in text

    def test_revealed(self):
        text = question_types.feedback("multiple_choice", MC_CONTENT, ["b"], False, reveal=True)
        assert "Paris" in text

    def test_correct(self):
        assert question_types.feedback("true_false", {"correct_answer": True}, True, True) == "Correct!"


class TestHelpers:
    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3

    def test_similarity_ignores_case_and_padding(self):
        assert string_similarity(" Hello ", "hello") == 1.0

    @pytest.mark.parametrize(
        "percentage, grade",
        [(100, "A+"), (93, "A"), (85, "B"), (70, "C-"), (60, "D-"), (59.9, "F")],
    )
    def test_letter_grade(self, percentage, grade):
        assert letter_grade(percentage) == grade
