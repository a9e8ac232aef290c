# ==================================================================
# services/quiz.py (weekly quiz gate)
# ==================================================================
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import AlreadyAttempted, QuestionNotFound, RaffleNotActive, RaffleNotFound, ValidationError
from helpers import mask_sensitive, normalize_address, normalize_answer, utcnow
from models import QuizQuestion, UserQuizAttempt, WeeklyRaffle
from services.views import attempt_to_dict, format_amount, question_to_public_dict

logger = logging.getLogger(__name__)


# ===============================================================
# Lookups
# ===============================================================
async def get_active_raffle(session: AsyncSession) -> WeeklyRaffle | None:
    result = await session.execute(
        select(WeeklyRaffle)
        .where(WeeklyRaffle.status == "active")
        .order_by(WeeklyRaffle.week_number.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_active_question(session: AsyncSession, week_number: int) -> QuizQuestion | None:
    result = await session.execute(
        select(QuizQuestion)
        .where(QuizQuestion.week_number == week_number)
        .where(QuizQuestion.is_active.is_(True))
        .order_by(QuizQuestion.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_attempt(session: AsyncSession, user_address: str, week_number: int) -> UserQuizAttempt | None:
    result = await session.execute(
        select(UserQuizAttempt)
        .where(UserQuizAttempt.user_address == user_address)
        .where(UserQuizAttempt.week_number == week_number)
    )
    return result.scalar_one_or_none()


# ===============================================================
# Current quiz (never exposes the correct answer)
# ===============================================================
def _seconds_until(end_at: datetime, now: datetime) -> int:
    return max(int((end_at - now).total_seconds()), 0)


def with_time_remaining(view: dict, now: datetime | None = None) -> dict:
    """Copy of a (possibly cached) current-quiz view with the countdown taken at `now`."""
    end_at = datetime.fromisoformat(view["raffle_end_at"])
    return {**view, "time_remaining_seconds": _seconds_until(end_at, now or utcnow())}


async def get_current_quiz(session: AsyncSession, now: datetime | None = None) -> dict:
    now = now or utcnow()
    raffle = await get_active_raffle(session)
    if raffle is None:
        raise RaffleNotFound("No active raffle this week")

    question = await get_active_question(session, raffle.week_number)
    if question is None:
        raise QuestionNotFound(f"No quiz published for week {raffle.week_number}", week_number=raffle.week_number)

    view = question_to_public_dict(question)
    view.update({
        "raffle_end_at": raffle.end_at.isoformat(),
        "time_remaining_seconds": _seconds_until(raffle.end_at, now),
        "ticket_price": format_amount(raffle.ticket_price),
        "tickets_sold": raffle.tickets_sold,
        "prize_pool": format_amount(raffle.prize_pool),
    })
    return view


# ===============================================================
# Submit answer
# ===============================================================
async def submit_answer(
    session: AsyncSession,
    user_address: str,
    week_number: int,
    question_id: int,
    answer: str,
    time_taken_seconds: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Score one user's single attempt at the week's question.

    The (user_address, week_number) unique constraint is what rejects a
    second attempt, so two concurrent submissions cannot both land.
    """
    user = normalize_address(user_address)
    if not str(answer or "").strip():
        raise ValidationError("Answer is required", field="user_answer")
    now = now or utcnow()

    question = await get_active_question(session, week_number)
    if question is None or question.id != question_id:
        raise QuestionNotFound(week_number=week_number, quiz_question_id=question_id)

    raffle = (
        await session.execute(
            select(WeeklyRaffle)
            .where(WeeklyRaffle.week_number == week_number)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if raffle is None or raffle.status != "active" or raffle.end_at <= now:
        raise RaffleNotActive(f"Raffle for week {week_number} is not accepting quiz attempts")

    is_correct = normalize_answer(answer) == normalize_answer(question.correct_answer)
    attempt = UserQuizAttempt(
        user_address=user,
        week_number=week_number,
        quiz_question_id=question.id,
        user_answer=str(answer).strip(),
        is_correct=is_correct,
        points_earned=question.points_reward if is_correct else 0,
        can_mint_ticket=is_correct,
        time_taken_seconds=time_taken_seconds,
        attempted_at=now,
    )
    session.add(attempt)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info(f"🔁 Duplicate quiz attempt {mask_sensitive(user)} week={week_number}")
        raise AlreadyAttempted(week_number=week_number)

    logger.info(
        f"{'✅' if is_correct else '❌'} Quiz attempt {mask_sensitive(user)} week={week_number} "
        f"correct={is_correct}"
    )
    return {
        "is_correct": is_correct,
        "points_earned": attempt.points_earned,
        "can_mint_ticket": attempt.can_mint_ticket,
        "explanation": question.explanation,
        "attempt": attempt_to_dict(attempt),
    }


# ===============================================================
# Per-user quiz statistics
# ===============================================================
async def get_user_quiz_stats(session: AsyncSession, user_address: str) -> dict:
    user = normalize_address(user_address)
    result = await session.execute(
        select(UserQuizAttempt)
        .where(UserQuizAttempt.user_address == user)
        .order_by(UserQuizAttempt.week_number.asc())
    )
    attempts = result.scalars().all()

    total = len(attempts)
    correct = sum(1 for a in attempts if a.is_correct)

    best = run = 0
    for attempt in attempts:
        run = run + 1 if attempt.is_correct else 0
        best = max(best, run)

    return {
        "user_address": user,
        "total_attempts": total,
        "correct_answers": correct,
        "total_points": sum(a.points_earned for a in attempts),
        "accuracy_percentage": round(correct * 100 / total, 1) if total else 0.0,
        "current_streak": run,
        "best_streak": best,
    }
