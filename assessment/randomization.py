"""
Deterministic per-attempt shuffling of question and option order.

The permutation itself is never stored. Only the seed lives in the cache,
so any request can re-derive the same order while the attempt runs, and a
missing seed simply means the student sees the authored order.
"""
import copy
import logging
import random
import secrets
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .cache import SeedCache
from .config import SEED_TTL_BUFFER_SECONDS
from .question_types import get_handler

logger = logging.getLogger(__name__)

SEED_QUESTIONS = "questions"
SEED_OPTIONS = "options"
SEED_TYPES = (SEED_QUESTIONS, SEED_OPTIONS)


def seed_key(attempt_id: int, seed_type: str) -> str:
    return f"attempt:{attempt_id}:seed:{seed_type}"


def shuffle(items: Sequence[Any], seed: int) -> List[Any]:
    shuffled = list(items)
    random.Random(seed).shuffle(shuffled)
    return shuffled


def _default_source() -> int:
    return secrets.randbits(63)


class Randomizer:
    def __init__(
        self,
        cache: SeedCache,
        source: Callable[[], int] = _default_source,
        ttl_buffer: int = SEED_TTL_BUFFER_SECONDS,
    ):
        self.cache = cache
        self.source = source
        self.ttl_buffer = ttl_buffer

    # ===== seeds =====

    def generate_seed(self) -> int:
        try:
            return int(self.source())
        except Exception as e:
            logger.warning("Randomness source failed, falling back to clock seed (degraded): %s", e)
            return time.time_ns()

    def ensure_seed(self, attempt_id: int, seed_type: str, duration_minutes: int) -> Optional[int]:
        """Store a seed for the attempt unless one exists; return the effective seed."""
        ttl = duration_minutes * 60 + max(self.ttl_buffer, 1)
        seed = self.generate_seed()
        # first writer wins, a concurrent start keeps the stored seed
        if not self.cache.set(seed_key(attempt_id, seed_type), str(seed), ttl=ttl, nx=True):
            return self.get_seed(attempt_id, seed_type)
        return seed

    def get_seed(self, attempt_id: int, seed_type: str) -> Optional[int]:
        raw = self.cache.get(seed_key(attempt_id, seed_type))
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed seed for attempt %s (%s): %r", attempt_id, seed_type, raw)
            return None

    def refresh_seeds(self, attempt_id: int, seconds_left: int) -> None:
        """Stretch the TTL of existing seeds so they outlive a moved deadline."""
        ttl = max(seconds_left, 0) + max(self.ttl_buffer, 1)
        for seed_type in SEED_TYPES:
            self.cache.expire(seed_key(attempt_id, seed_type), ttl)

    def clear_seeds(self, attempt_id: int) -> None:
        self.cache.delete(*(seed_key(attempt_id, seed_type) for seed_type in SEED_TYPES))

    # ===== application =====

    def shuffle_questions(self, attempt_id: int, questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        seed = self.get_seed(attempt_id, SEED_QUESTIONS)
        if seed is None:
            return questions
        return shuffle(questions, seed)

    def shuffle_options(self, attempt_id: int, questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        base_seed = self.get_seed(attempt_id, SEED_OPTIONS)
        if base_seed is None:
            return questions
        return [self._shuffle_question_options(q, base_seed) for q in questions]

    def _shuffle_question_options(self, question: Dict[str, Any], base_seed: int) -> Dict[str, Any]:
        handler = get_handler(question.get("type"))
        content = question.get("content")
        if handler is None or not handler.shuffle_fields or not isinstance(content, dict):
            return question

        shuffled = copy.deepcopy(question)
        # offset by question id so questions don't share one permutation
        seed = base_seed + int(question["id"])
        for field in handler.shuffle_fields:
            items = shuffled["content"].get(field)
            if isinstance(items, list):
                shuffled["content"][field] = shuffle(items, seed)
        return shuffled

    def apply(
        self,
        attempt_id: int,
        questions: List[Dict[str, Any]],
        randomize_questions: bool,
        randomize_options: bool,
    ) -> List[Dict[str, Any]]:
        if randomize_questions:
            questions = self.shuffle_questions(attempt_id, questions)
        if randomize_options:
            questions = self.shuffle_options(attempt_id, questions)
        return questions
