"""
Shared fixtures: in-memory SQLite, a dict-backed Redis client, a frozen
clock and an inline grading queue. No network, no threads unless a test
asks for them.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assessment.attempt_service import AttemptService
from assessment.cache import RedisCache
from assessment.dispatcher import GradingQueue
from assessment.grading_service import GradingService
from assessment.randomization import Randomizer
from db.database import Base
from db.init_db import init_db
from db.models.assessment_questions import AssessmentQuestion
from db.models.assessments import STATUS_ACTIVE, Assessment
from db.models.questions import Question
from db.models.users import ROLE_ADMIN, ROLE_STUDENT, ROLE_TEACHER, User

START = datetime(2025, 3, 3, 9, 0, 0)

MC_CONTENT = {
    "options": [
        {"id": "a", "text": "Paris"},
        {"id": "b", "text": "Rome"},
        {"id": "c", "text": "Madrid"},
        {"id": "d", "text": "Berlin"},
    ],
    "correct_answers": ["a"],
}
TF_CONTENT = {"correct_answer": True}
SHORT_CONTENT = {"accepted_answers": ["photosynthesis"], "fuzzy_matching": True}
ESSAY_CONTENT = {"min_words": 50, "sample_answer": "A model essay.", "key_words": ["energy"]}


class FrozenClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRedis:
    """Just enough of redis.Redis for RedisCache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def expire(self, key, time):
        if key not in self.store:
            return False
        self.ttls[key] = time
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


class SeedSequence:
    def __init__(self, start=1000):
        self.next = start

    def __call__(self):
        value = self.next
        self.next += 1
        return value


class RecordingSink:
    def __init__(self):
        self.results = []

    def attempt_graded(self, result):
        self.results.append(result)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def randomizer(fake_redis):
    return Randomizer(RedisCache(client=fake_redis), source=SeedSequence(), ttl_buffer=3600)


@pytest.fixture
def grading_queue():
    return GradingQueue(workers=0, max_retries=2, retry_delay=0, sleep=lambda seconds: None)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def grading_service(session_factory, grading_queue, sink, clock):
    return GradingService(session_factory, grading_queue, event_sink=sink, clock=clock)


@pytest.fixture
def attempt_service(session_factory, randomizer, grading_queue, grading_service, clock):
    return AttemptService(session_factory, randomizer, grading_queue, grading_service, clock=clock)


@pytest.fixture
def users(db):
    db.add_all(
        [
            User(id="student-1", role=ROLE_STUDENT, full_name="Sara Student"),
            User(id="student-2", role=ROLE_STUDENT, full_name="Omar Student"),
            User(id="teacher-1", role=ROLE_TEACHER, full_name="Tala Teacher"),
            User(id="teacher-2", role=ROLE_TEACHER, full_name="Other Teacher"),
            User(id="admin-1", role=ROLE_ADMIN, full_name="Ada Admin"),
        ]
    )
    db.commit()


def add_question(db, qtype, content, created_by="teacher-1", text="Question", explanation=None):
    question = Question(type=qtype, text=text, content=content, created_by=created_by, explanation=explanation)
    db.add(question)
    db.flush()
    return question


def make_assessment(db, questions, **overrides):
    """``questions`` is a list of (Question, points)."""
    fields = dict(
        title="Unit test",
        status=STATUS_ACTIVE,
        duration=30,
        passing_score=60,
        max_attempts=2,
        created_by="teacher-1",
    )
    fields.update(overrides)
    assessment = Assessment(**fields)
    db.add(assessment)
    db.flush()
    for order, (question, points) in enumerate(questions):
        db.add(AssessmentQuestion(assessment_id=assessment.id, question_id=question.id, points=points, order=order))
    db.commit()
    return assessment


@pytest.fixture
def quiz(db, users):
    """Active quiz worth 100 points: mc 40, true/false 20, short answer 20, essay 20."""
    mc = add_question(db, "multiple_choice", MC_CONTENT, text="Capital of France?", explanation="Paris.")
    tf = add_question(db, "true_false", TF_CONTENT, text="The sky is blue.")
    short = add_question(db, "short_answer", SHORT_CONTENT, text="How do plants make food?")
    essay = add_question(db, "essay", ESSAY_CONTENT, text="Discuss energy.")
    assessment = make_assessment(db, [(mc, 40), (tf, 20), (short, 20), (essay, 20)])
    return {
        "assessment_id": assessment.id,
        "mc": mc.id,
        "tf": tf.id,
        "short": short.id,
        "essay": essay.id,
    }


@pytest.fixture
def objective_quiz(db, users):
    """Auto-gradable only: mc 60, true/false 40."""
    mc = add_question(db, "multiple_choice", MC_CONTENT, text="Capital of France?")
    tf = add_question(db, "true_false", TF_CONTENT, text="The sky is blue.")
    assessment = make_assessment(db, [(mc, 60), (tf, 40)], show_correct_answers=True)
    return {"assessment_id": assessment.id, "mc": mc.id, "tf": tf.id}
