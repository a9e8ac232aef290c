"""Pytest configuration and fixtures."""

import asyncio
import os

# db.py refuses to import without a URL; tests build their own engines below
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BACKGROUND_TASKS", "false")

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from db import init_db, make_engine, make_sessionmaker
from helpers import utcnow
from models import QuizQuestion, WeeklyRaffle
from services.ledger import ChainTransaction, LedgerVerifier
from services.payout import PrizeSender
from services.quiz import submit_answer

ALICE = "0x" + "a1" * 32
BOB = "0x" + "b2" * 32
CAROL = "0x" + "c3" * 32
TREASURY = "0x" + "7e" * 32
ADMIN_TOKEN = "test-admin-token"


# ------------------------------------------------
# Database
# ------------------------------------------------
@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions really contend."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'raffle.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def make_raffle(session_factory):
    async def _make(week_number=7, status="active", ends_in=timedelta(days=6), prize_pool="0", tickets_sold=0):
        now = utcnow()
        async with session_factory() as s:
            raffle = WeeklyRaffle(
                week_number=week_number,
                status=status,
                start_at=now - timedelta(days=1),
                end_at=now + ends_in,
                ticket_price=Decimal("1.0"),
                prize_pool=Decimal(prize_pool),
                tickets_sold=tickets_sold,
            )
            s.add(raffle)
            await s.commit()
            return raffle
    return _make


@pytest.fixture
def make_question(session_factory):
    async def _make(week_number=7, answer="Sui", points=15, explanation="Sui is a layer-1 chain."):
        async with session_factory() as s:
            question = QuizQuestion(
                week_number=week_number,
                question_text=f"Week {week_number}: which chain settles RaffleCraft tickets?",
                question_type="multiple_choice",
                options=["Ethereum", "Sui", "Solana", "Aptos"],
                correct_answer=answer,
                explanation=explanation,
                difficulty="medium",
                category="blockchain",
                points_reward=points,
            )
            s.add(question)
            await s.commit()
            return question
    return _make


@pytest_asyncio.fixture
async def week7(make_raffle, make_question):
    """Active week-7 raffle with its question."""
    raffle = await make_raffle(7)
    question = await make_question(7)
    return raffle, question


@pytest.fixture
def answer_quiz(session_factory):
    async def _answer(user, question, answer=None):
        async with session_factory() as s:
            return await submit_answer(
                s, user, question.week_number, question.id, answer or question.correct_answer
            )
    return _answer


# ------------------------------------------------
# Fake chain + verifier
# ------------------------------------------------
class FakeChain:
    """In-memory stand-in for the chain query capability."""

    def __init__(self):
        self.transactions = {}
        self.calls = 0
        self.error = None

    def add(self, digest, sender, amount, status="success", block=4242, gas="0.00198"):
        self.transactions[digest] = ChainTransaction(
            digest=digest,
            sender=sender,
            status=status,
            amount=Decimal(str(amount)),
            gas_fee=Decimal(gas),
            finalized_block=block,
        )

    async def get_transaction(self, digest):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.transactions.get(digest)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def verifier(chain):
    return LedgerVerifier(chain, min_amount=Decimal("1.0"), tolerance=Decimal("0.001"))


# ------------------------------------------------
# Fake prize sender
# ------------------------------------------------
class FakePrizeSender(PrizeSender):
    def __init__(self):
        self.sent = []
        self.fail_with = None
        self.delay = 0

    async def send(self, to_address, amount):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_address, Decimal(amount)))
        return f"0xpayout{len(self.sent):04d}"


@pytest.fixture
def prize_sender():
    return FakePrizeSender()


# ------------------------------------------------
# API client
# ------------------------------------------------
@pytest_asyncio.fixture
async def client(session_factory, verifier, prize_sender, monkeypatch):
    import config
    from app import app, get_ledger_verifier, get_prize_sender
    from db import get_session
    from utils.cache import ResponseCache

    async def override_session():
        async with session_factory() as s:
            yield s

    monkeypatch.setattr(config, "RAFFLE_ADMIN_TOKEN", ADMIN_TOKEN)
    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_ledger_verifier] = lambda: verifier
    app.dependency_overrides[get_prize_sender] = lambda: prize_sender
    app.state.cache = ResponseCache(ttl=30)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
