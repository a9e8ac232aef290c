"""Tests for helpers, the response cache, admin auth, secret masking and the questions loader."""

import json
import logging
from decimal import Decimal

import pytest
from sqlalchemy import select

from errors import ValidationError
from helpers import mask_sensitive, normalize_address, normalize_answer, normalize_tx_hash, to_decimal
from logging_setup import SecretFilter
from models import QuizQuestion
from utils.cache import ResponseCache
from utils.questions_loader import load_weekly_questions, read_questions_file
from utils.security import is_valid_admin_token


# ------------------------------------------------
# helpers
# ------------------------------------------------
def test_normalize_address():
    assert normalize_address("  0x" + "AB" * 32 + " ") == "0x" + "ab" * 32
    for bad in ("", "0x123", "ab" * 32, "0x" + "zz" * 32):
        with pytest.raises(ValidationError):
            normalize_address(bad)


def test_normalize_tx_hash_keeps_base58_case():
    assert normalize_tx_hash("0xABCdef") == "0xabcdef"
    digest = "5Hq7mTzL3yGpXkWcNvB1rE9sJdFaU2oQ4iY6hK8bM3xZ"
    assert normalize_tx_hash(digest) == digest
    with pytest.raises(ValidationError):
        normalize_tx_hash("   ")
    with pytest.raises(ValidationError):
        normalize_tx_hash("0l0l-nope")


def test_normalize_answer():
    assert normalize_answer("  Proof   of\tStake ") == "proof of stake"
    assert normalize_answer(None) == ""


def test_to_decimal():
    assert to_decimal("1.25") == Decimal("1.25")
    assert to_decimal(2) == Decimal("2")
    with pytest.raises(ValidationError):
        to_decimal("one")


def test_mask_sensitive():
    assert mask_sensitive("0x1234567890") == "******567890"
    assert mask_sensitive("abc") == "abc"
    assert mask_sensitive(None) == ""


# ------------------------------------------------
# ResponseCache
# ------------------------------------------------
@pytest.mark.asyncio
async def test_cache_serves_stored_value_until_invalidated():
    cache = ResponseCache(ttl=60)
    calls = []

    async def loader():
        calls.append(1)
        return {"n": len(calls)}

    assert await cache.get_or_load(("stats",), loader) == {"n": 1}
    assert await cache.get_or_load(("stats",), loader) == {"n": 1}
    assert len(calls) == 1

    cache.invalidate("current_quiz")
    assert await cache.get_or_load(("stats",), loader) == {"n": 1}

    cache.invalidate("stats")
    assert await cache.get_or_load(("stats",), loader) == {"n": 2}


@pytest.mark.asyncio
async def test_cache_invalidate_all_and_disabled_ttl():
    cache = ResponseCache(ttl=60)

    async def loader():
        return "v"

    await cache.get_or_load(("a",), loader)
    await cache.get_or_load(("b", 1), loader)
    assert len(cache) == 2
    cache.invalidate()
    assert len(cache) == 0

    uncached = ResponseCache(ttl=0)
    await uncached.get_or_load(("a",), loader)
    assert len(uncached) == 0


@pytest.mark.asyncio
async def test_cache_does_not_store_failures():
    cache = ResponseCache(ttl=60)

    async def failing():
        raise RuntimeError("db down")

    with pytest.raises(RuntimeError):
        await cache.get_or_load(("stats",), failing)
    assert len(cache) == 0


# ------------------------------------------------
# Admin token
# ------------------------------------------------
@pytest.mark.parametrize(
    "header, expected, valid",
    [
        ("Bearer s3cret", "s3cret", True),
        ("bearer s3cret", "s3cret", True),
        ("Bearer wrong", "s3cret", False),
        ("Basic s3cret", "s3cret", False),
        ("s3cret", "s3cret", False),
        (None, "s3cret", False),
        ("Bearer s3cret", None, False),
    ],
)
def test_is_valid_admin_token(header, expected, valid):
    assert is_valid_admin_token(header, expected) is valid


# ------------------------------------------------
# SecretFilter
# ------------------------------------------------
def test_secret_filter_masks_tokens():
    record = logging.LogRecord(
        "test", logging.INFO, __file__, 1,
        "signer call Authorization: Bearer abc.def-123 token=supersecret", None, None,
    )
    SecretFilter().filter(record)

    assert "abc.def-123" not in record.msg
    assert "supersecret" not in record.msg
    assert "[SECRET]" in record.msg


# ------------------------------------------------
# Questions loader
# ------------------------------------------------
@pytest.fixture
def questions_file(tmp_path):
    path = tmp_path / "questions.json"
    path.write_text(json.dumps([
        {
            "week_number": 1,
            "question": "What consensus does Sui use for owned objects?",
            "answer": "Fast path",
            "options": ["Fast path", "Proof of Work", "Raft"],
            "difficulty": "hard",
            "category": "blockchain",
        },
        {
            "week_number": 2,
            "question": "How many MIST are in one SUI?",
            "answer": "1000000000",
            "difficulty": "easy",
        },
    ]), encoding="utf-8")
    return path


@pytest.mark.asyncio
async def test_load_weekly_questions_is_idempotent(session_factory, questions_file):
    async with session_factory() as s:
        assert await load_weekly_questions(s, str(questions_file)) == 2
    async with session_factory() as s:
        assert await load_weekly_questions(s, str(questions_file)) == 0

    async with session_factory() as s:
        rows = (await s.execute(select(QuizQuestion).order_by(QuizQuestion.week_number))).scalars().all()

    assert [r.week_number for r in rows] == [1, 2]
    assert rows[0].question_type == "multiple_choice"
    assert rows[0].points_reward == 20
    assert rows[1].question_type == "text"
    assert rows[1].points_reward == 10


def test_read_questions_file_requires_list(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"week_number": 1}), encoding="utf-8")
    with pytest.raises(ValueError):
        read_questions_file(str(path))
