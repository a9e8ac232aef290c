# ===========================================================
# utils/questions_loader.py  (weekly quiz questions from JSON)
# ===========================================================
"""
Loads authored quiz questions into quiz_questions.

File format: a JSON list of objects with at least
``week_number``, ``question``, ``answer``; optional ``options``,
``explanation``, ``difficulty``, ``category``, ``question_type``,
``points_reward``. Rows are keyed by (week_number, question text), so
re-loading the same file is a no-op.
"""
import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import QuizQuestion

logger = logging.getLogger(__name__)

# Points per difficulty when the file doesn't set points_reward
POINTS_REWARDS = {"easy": 10, "medium": 15, "hard": 20}


def read_questions_file(path: str) -> list[dict]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of questions")
    return data


def _to_row(item: dict) -> QuizQuestion:
    difficulty = (item.get("difficulty") or "medium").lower()
    options = item.get("options")
    return QuizQuestion(
        week_number=int(item["week_number"]),
        question_text=item["question"].strip(),
        question_type=item.get("question_type") or ("multiple_choice" if options else "text"),
        options=options,
        correct_answer=str(item["answer"]).strip(),
        explanation=item.get("explanation"),
        difficulty=difficulty,
        category=item.get("category"),
        points_reward=int(item.get("points_reward") or POINTS_REWARDS.get(difficulty, 15)),
        is_active=bool(item.get("is_active", True)),
    )


async def load_weekly_questions(session: AsyncSession, path: str) -> int:
    """Insert questions not yet present. Returns how many were added."""
    added = 0
    for item in read_questions_file(path):
        row = _to_row(item)
        exists = (
            await session.execute(
                select(QuizQuestion.id)
                .where(QuizQuestion.week_number == row.week_number)
                .where(QuizQuestion.question_text == row.question_text)
            )
        ).scalar_one_or_none()
        if exists is not None:
            continue
        session.add(row)
        added += 1

    await session.commit()
    logger.info(f"📚 Loaded {added} new quiz question(s) from {path}")
    return added
