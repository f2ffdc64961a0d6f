"""
Shared fixtures: a throwaway SQLite database per test, seeded users and
content, and in-memory stand-ins for Stripe and the AI grader.
"""

import json
import os
import tempfile
import uuid
from datetime import datetime

# must be set before ielts_backend.core.config is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="ielts-logs-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ielts_backend.core.database import build_engine, init_models, unit_of_work
from ielts_backend.models.content import (
    ListeningAudio,
    ListeningQuestion,
    ReadingPassage,
    ReadingQuestion,
    SpeakingQuestion,
    WritingPrompt,
)
from ielts_backend.models.credit_ledger import CreditLedger, LedgerKind
from ielts_backend.models.user import ROLE_ADMIN, ROLE_USER, User
from ielts_backend.services import ledger_service
from ielts_backend.services.auth_service import hash_password
from ielts_backend.services.errors import ExternalServiceError, GradingUnavailable
from ielts_backend.services.grading_service import (
    GradingCost,
    SpeakingGrade,
    WritingGrade,
    calculate_cost,
)

PASSWORD = "correct-horse-battery"

# Four questions, one of each answer shape
READING_KEYS = [
    ("MCQ", "Which option is right?", "B"),
    ("TRUE_FALSE", "The author agrees.", True),
    ("GAP_FILL", "Name the city and the country.", ["paris", "france"]),
    ("SHORT_ANSWER", "Which animal is mentioned?", "Cat"),
]


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
def make_user(session_factory):
    """Create a user whose starting credits are backed by a GRANT entry."""

    async def _make(credits: int = 0, role: str = ROLE_USER, email: str = None, disabled: bool = False) -> str:
        user_id = str(uuid.uuid4())
        async with unit_of_work(session_factory) as db:
            db.add(User(
                id=user_id,
                email=email or f"{user_id[:8]}@example.com",
                password_hash=hash_password(PASSWORD),
                name="Test User",
                role=role,
                credits=0,
                is_disabled=disabled,
                created_at=datetime.utcnow(),
            ))
            await db.flush()
            if credits:
                await ledger_service.append(db, user_id, credits, LedgerKind.GRANT, reason="Welcome credits")
        return user_id

    return _make


@pytest.fixture
def make_admin(make_user):
    async def _make() -> str:
        return await make_user(role=ROLE_ADMIN)

    return _make


@pytest.fixture
def seed_reading(session_factory):
    async def _seed(published: bool = True, level: str = "B2", questions=READING_KEYS) -> dict:
        passage_id = str(uuid.uuid4())
        question_ids = []
        async with unit_of_work(session_factory) as db:
            db.add(ReadingPassage(
                id=passage_id,
                title="Urban Wildlife",
                text="Cats roam the streets of Paris, France...",
                level=level,
                is_published=published,
            ))
            for qtype, text, answer in questions:
                qid = str(uuid.uuid4())
                question_ids.append(qid)
                db.add(ReadingQuestion(
                    id=qid,
                    passage_id=passage_id,
                    type=qtype,
                    question_text=text,
                    options=["A", "B", "C", "D"] if qtype == "MCQ" else None,
                    correct_answer=answer,
                    explanation=f"Explanation for {qtype}",
                    is_published=True,
                ))
        return {"passage_id": passage_id, "question_ids": question_ids}

    return _seed


@pytest.fixture
def seed_listening(session_factory):
    async def _seed() -> dict:
        audio_id = str(uuid.uuid4())
        ids = []
        async with unit_of_work(session_factory) as db:
            db.add(ListeningAudio(id=audio_id, title="Lecture", url="https://cdn.example.com/a.mp3",
                                  duration=600, is_published=True))
            # inserted out of order on purpose
            for ts, answer in ((90, "library"), (10, "monday")):
                qid = str(uuid.uuid4())
                ids.append((ts, qid))
                db.add(ListeningQuestion(id=qid, audio_id=audio_id, type="GAP_FILL", timestamp=ts,
                                         question_text=f"At {ts}s", correct_answer=answer, is_published=True))
        return {"audio_id": audio_id, "question_ids": [qid for _, qid in sorted(ids)]}

    return _seed


@pytest.fixture
def seed_writing(session_factory):
    async def _seed(task_type: str = "TASK_2", time_limit: int = 40) -> str:
        prompt_id = str(uuid.uuid4())
        async with unit_of_work(session_factory) as db:
            db.add(WritingPrompt(
                id=prompt_id,
                task_type=task_type,
                topic="Some people think cities should ban cars. Discuss.",
                time_limit=time_limit,
                word_count=250 if task_type == "TASK_2" else 150,
                is_published=True,
            ))
        return prompt_id

    return _seed


@pytest.fixture
def seed_speaking(session_factory):
    async def _seed(parts=(1, 2, 3)) -> dict:
        ids = {}
        async with unit_of_work(session_factory) as db:
            for part in parts:
                qid = str(uuid.uuid4())
                ids[part] = qid
                db.add(SpeakingQuestion(
                    id=qid,
                    part=part,
                    cue_card_text=f"Part {part} question",
                    prep_time=60 if part == 2 else 0,
                    recording_time=120,
                    follow_up_questions=["Why?"] if part == 3 else [],
                    is_published=True,
                ))
        return ids

    return _seed


@pytest.fixture
def balances(session_factory):
    """Return (cached balance, ledger sum) for a user."""

    async def _get(user_id: str):
        async with session_factory() as db:
            return (
                await ledger_service.cached_balance(db, user_id),
                await ledger_service.balance_of(db, user_id),
            )

    return _get


@pytest.fixture
def ledger_rows(session_factory):
    async def _rows(user_id: str):
        async with session_factory() as db:
            result = await db.execute(
                select(CreditLedger).where(CreditLedger.user_id == user_id).order_by(CreditLedger.created_at)
            )
            return list(result.scalars().all())

    return _rows


class FakeGateway:
    """Records calls instead of talking to Stripe."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.refunds = []
        self.sessions = []

    def create_checkout_session(self, user_id, pack):
        if self.fail:
            raise ExternalServiceError()
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append((session_id, user_id, pack.id))
        return session_id, f"https://checkout.stripe.test/{session_id}"

    def reverse_charge(self, payment_ref):
        if self.fail:
            raise ExternalServiceError()
        self.refunds.append(payment_ref)
        return f"re_{len(self.refunds)}"

    def construct_event(self, payload, signature):
        # same object type stripe.Webhook.construct_event hands back
        return stripe.Event.construct_from(json.loads(payload), "sk_test")


class FakeGrader:
    def __init__(self, fail: bool = False, score: float = 7.0):
        self.fail = fail
        self.score = score
        self.calls = []

    async def grade_writing(self, task_type, topic, text, time_spent=None):
        self.calls.append(("writing", task_type))
        if self.fail:
            raise GradingUnavailable("grader offline")
        grade = WritingGrade(
            score=self.score,
            task_response=self.score,
            coherence=self.score,
            vocabulary=self.score - 0.5,
            grammar=self.score,
            feedback="Clear position throughout.",
            improved_answer_example="Model answer.",
        )
        return grade, GradingCost(1000, 500, calculate_cost(1000, 500))

    async def grade_speaking(self, audio, part1, part2, part3_questions, time_spent=None):
        self.calls.append(("speaking", audio))
        if self.fail:
            raise GradingUnavailable("grader offline")
        grade = SpeakingGrade(
            score=self.score,
            fluency=self.score,
            pronunciation=self.score,
            vocabulary=self.score,
            grammar=self.score,
            feedback="Good range.",
            improvement_plan="Keep practising.",
            transcript="I think that cities should...",
            asr_cost=GradingCost(100, 10, calculate_cost(100, 10)),
        )
        return grade, GradingCost(2000, 400, calculate_cost(2000, 400))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def grader():
    return FakeGrader()


def checkout_event(payment_ref="pi_abc", user_id=None, pack_id="pack_b", event_type="checkout.session.completed"):
    metadata = {}
    if user_id:
        metadata["userId"] = user_id
    if pack_id:
        metadata["packId"] = pack_id
    return {
        "id": f"evt_{payment_ref}",
        "type": event_type,
        "data": {"object": {"id": "cs_test_1", "payment_intent": payment_ref, "metadata": metadata}},
    }


@pytest.fixture
def make_event():
    return checkout_event


@pytest.fixture
def failing_gateway():
    return FakeGateway(fail=True)


@pytest.fixture
def failing_grader():
    return FakeGrader(fail=True)
