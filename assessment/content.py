from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"
    ORDERING = "ordering"
    SHORT_ANSWER = "short_answer"


# ===== Multiple choice =====

class MCOption(BaseModel):
    id: str
    text: str
    image_url: Optional[str] = None
    order: int = 0


class MultipleChoiceContent(BaseModel):
    options: List[MCOption] = Field(min_length=2, max_length=10)
    correct_answers: List[str] = Field(min_length=1)
    multiple_correct: bool = False
    randomize_options: bool = False
    partial_credit: bool = False


# ===== True / False =====

class TrueFalseContent(BaseModel):
    correct_answer: bool
    true_label: Optional[str] = None
    false_label: Optional[str] = None


# ===== Essay =====

class EssayContent(BaseModel):
    min_words: Optional[int] = None
    max_words: Optional[int] = None
    suggested_length: str = ""
    rubric_criteria: List[str] = []
    sample_answer: Optional[str] = None
    auto_grade: bool = False
    key_words: List[str] = []


# ===== Fill in the blank =====

class BlankDef(BaseModel):
    accepted_answers: List[str]
    points: int = 1
    placeholder_text: Optional[str] = None


class FillBlankContent(BaseModel):
    template: str  # "The capital of {blank1} is {blank2}"
    blanks: Dict[str, BlankDef]
    case_sensitive: bool = False
    trim_spaces: bool = True


# ===== Matching =====

class MatchItem(BaseModel):
    id: str
    text: str
    image_url: Optional[str] = None


class MatchPair(BaseModel):
    left_id: str
    right_id: str


class MatchingContent(BaseModel):
    left_items: List[MatchItem] = Field(min_length=2, max_length=10)
    right_items: List[MatchItem] = Field(min_length=2, max_length=10)
    correct_pairs: List[MatchPair]
    randomize_left: bool = False
    randomize_right: bool = False
    partial_credit: bool = True


# ===== Ordering =====

class OrderItem(BaseModel):
    id: str
    text: str
    image_url: Optional[str] = None


class OrderingContent(BaseModel):
    items: List[OrderItem] = Field(min_length=2, max_length=10)
    correct_order: List[str]
    randomize_initial: bool = False
    partial_credit: bool = True


# ===== Short answer =====

class ShortAnswerContent(BaseModel):
    accepted_answers: List[str]
    case_sensitive: bool = False
    exact_match: bool = False
    max_length: int = Field(default=255, ge=1, le=500)
    placeholder_text: Optional[str] = None
    fuzzy_matching: bool = False
