"""
Test: seeded shuffling and the seed cache.
"""
import redis

from assessment.cache import RedisCache
from assessment.randomization import SEED_OPTIONS, SEED_QUESTIONS, Randomizer, seed_key, shuffle

from conftest import MC_CONTENT, FakeRedis


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def set(self, key, value, ex=None, nx=False):
        raise redis.ConnectionError("down")

    def delete(self, *keys):
        raise redis.ConnectionError("down")


def _questions():
    return [
        {"id": i, "type": "multiple_choice", "text": f"Q{i}", "content": dict(MC_CONTENT)}
        for i in range(1, 6)
    ]


class TestShuffle:
    def test_same_seed_same_permutation(self):
        items = ["a", "b", "c", "d", "e"]
        assert shuffle(items, 42) == shuffle(items, 42)
        assert sorted(shuffle(items, 42)) == items

    def test_distinct_seeds_differ(self):
        items = ["a", "b", "c", "d", "e"]
        permutations = {tuple(shuffle(items, seed)) for seed in range(20)}
        assert len(permutations) > 1

    def test_input_not_mutated(self):
        items = [1, 2, 3, 4, 5]
        shuffle(items, 3)
        assert items == [1, 2, 3, 4, 5]


class TestSeeds:
    def test_first_writer_wins(self, randomizer, fake_redis):
        first = randomizer.ensure_seed(1, SEED_QUESTIONS, duration_minutes=30)
        second = randomizer.ensure_seed(1, SEED_QUESTIONS, duration_minutes=30)
        assert first == second == randomizer.get_seed(1, SEED_QUESTIONS)
        assert fake_redis.store[seed_key(1, SEED_QUESTIONS)] == str(first)

    def test_ttl_outlives_attempt(self, randomizer, fake_redis):
        randomizer.ensure_seed(1, SEED_OPTIONS, duration_minutes=30)
        assert fake_redis.ttls[seed_key(1, SEED_OPTIONS)] == 30 * 60 + 3600

    def test_clear(self, randomizer):
        randomizer.ensure_seed(1, SEED_QUESTIONS, 10)
        randomizer.ensure_seed(1, SEED_OPTIONS, 10)
        randomizer.clear_seeds(1)
        assert randomizer.get_seed(1, SEED_QUESTIONS) is None
        assert randomizer.get_seed(1, SEED_OPTIONS) is None

    def test_source_failure_falls_back(self, fake_redis):
        def broken():
            raise OSError("no entropy")

        randomizer = Randomizer(RedisCache(client=fake_redis), source=broken)
        assert isinstance(randomizer.ensure_seed(1, SEED_QUESTIONS, 5), int)

    def test_malformed_seed_ignored(self, randomizer, fake_redis):
        fake_redis.store[seed_key(1, SEED_QUESTIONS)] = "not-a-number"
        assert randomizer.get_seed(1, SEED_QUESTIONS) is None

    def test_cache_down_means_no_shuffle(self):
        randomizer = Randomizer(RedisCache(client=BrokenRedis()))
        assert randomizer.ensure_seed(1, SEED_QUESTIONS, 5) is None
        questions = _questions()
        assert randomizer.apply(1, questions, True, True) == questions
        randomizer.clear_seeds(1)


class TestApply:
    def test_missing_seed_keeps_authored_order(self, randomizer):
        questions = _questions()
        assert randomizer.apply(9, questions, True, True) == questions

    def test_question_order_is_stable(self, randomizer):
        randomizer.ensure_seed(1, SEED_QUESTIONS, 30)
        first = [q["id"] for q in randomizer.apply(1, _questions(), True, False)]
        again = [q["id"] for q in randomizer.apply(1, _questions(), True, False)]
        assert first == again
        assert sorted(first) == [1, 2, 3, 4, 5]

    def test_options_shuffled_per_question(self, randomizer):
        randomizer.ensure_seed(1, SEED_OPTIONS, 30)
        base = randomizer.get_seed(1, SEED_OPTIONS)
        shuffled = randomizer.apply(1, _questions(), False, True)

        for question in shuffled:
            expected = shuffle(MC_CONTENT["options"], base + question["id"])
            assert question["content"]["options"] == expected
        assert [q["id"] for q in shuffled] == [1, 2, 3, 4, 5]

    def test_source_questions_untouched(self, randomizer):
        randomizer.ensure_seed(1, SEED_OPTIONS, 30)
        questions = _questions()
        randomizer.apply(1, questions, False, True)
        assert all(q["content"]["options"] == MC_CONTENT["options"] for q in questions)

    def test_flags_off(self, randomizer):
        randomizer.ensure_seed(1, SEED_QUESTIONS, 30)
        randomizer.ensure_seed(1, SEED_OPTIONS, 30)
        questions = _questions()
        assert randomizer.apply(1, questions, False, False) == questions
