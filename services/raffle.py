# ==================================================================
# services/raffle.py (weekly raffle lifecycle)
# ==================================================================
"""
Weekly state machine: scheduled → active → completed.

Every status change is a conditional UPDATE guarded by the expected
current status. A sweep that loses that compare-and-swap simply skips the
raffle, so overlapping sweeps (cron + operator, or two replicas) never
close the same week twice or pick two winners. The unique week_number on
raffle_winners backs this up at the storage layer.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import config
from errors import (
    PayoutFailed,
    RaffleNotFound,
    StorageConflict,
    TicketNotFound,
    ValidationError,
    WinnerAlreadySelected,
)
from helpers import mask_sensitive, utcnow
from models import PayoutAttempt, RaffleTicket, RaffleWinner, UserQuizAttempt, WeeklyRaffle
from services.payout import distribute_prize
from services.views import format_amount, raffle_to_dict, winner_to_dict

logger = logging.getLogger(__name__)


# ===============================================================
# 1. Next raffle
# ===============================================================
async def ensure_next_raffle_exists(session: AsyncSession, now: datetime | None = None) -> WeeklyRaffle:
    """
    Return the open raffle, creating week max+1 if there is none.

    Two concurrent callers may both decide to create; the unique
    week_number (and the single-active index) make the loser's insert
    fail, which is treated as "already created".
    """
    now = now or utcnow()
    open_raffle = (
        await session.execute(
            select(WeeklyRaffle)
            .where(WeeklyRaffle.status.in_(("scheduled", "active")))
            .order_by(WeeklyRaffle.week_number.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if open_raffle is not None:
        return open_raffle

    max_week = (await session.execute(select(func.max(WeeklyRaffle.week_number)))).scalar()
    raffle = WeeklyRaffle(
        week_number=(max_week or 0) + 1,
        status="active",
        start_at=now,
        end_at=now + timedelta(days=config.RAFFLE_DURATION_DAYS),
        ticket_price=config.TICKET_PRICE_SUI,
        prize_pool=Decimal("0"),
        tickets_sold=0,
    )
    session.add(raffle)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info(f"🔁 Week {raffle.week_number} raffle already created by another worker")
        current = (
            await session.execute(
                select(WeeklyRaffle)
                .where(WeeklyRaffle.status.in_(("scheduled", "active")))
                .order_by(WeeklyRaffle.week_number.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if current is None:
            raise StorageConflict("Could not create or find the next raffle")
        return current

    logger.info(f"🆕 Raffle week {raffle.week_number} opened, ends {raffle.end_at.isoformat()}")
    return raffle


# ===============================================================
# 2. Winner assignment (shared by the draw and the manual override)
# ===============================================================
def draw_index(count: int) -> int:
    """Uniform index in [0, count) from the OS CSPRNG."""
    return secrets.randbelow(count)


async def _close(session: AsyncSession, week_number: int) -> bool:
    """CAS active → completed. False when another worker got there first."""
    result = await session.execute(
        update(WeeklyRaffle)
        .where(WeeklyRaffle.week_number == week_number)
        .where(WeeklyRaffle.status == "active")
        .values(status="completed")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _assign_winner(
    session: AsyncSession,
    week_number: int,
    ticket: RaffleTicket,
    total_tickets: int,
    method: str,
    now: datetime,
) -> RaffleWinner:
    """
    Mark the ticket, snapshot the winner and stamp the raffle. Runs inside
    the caller's transaction; the caller commits.
    """
    marked = await session.execute(
        update(RaffleTicket)
        .where(RaffleTicket.id == ticket.id)
        .where(RaffleTicket.week_number == week_number)
        .where(RaffleTicket.is_winning_ticket.is_(False))
        .values(is_winning_ticket=True)
        .execution_options(synchronize_session=False)
    )
    if marked.rowcount != 1:
        raise StorageConflict("Winning ticket already marked", week_number=week_number)

    prize_pool = (
        await session.execute(select(WeeklyRaffle.prize_pool).where(WeeklyRaffle.week_number == week_number))
    ).scalar_one()

    winner = RaffleWinner(
        week_number=week_number,
        winner_address=ticket.owner_address,
        winning_ticket_id=ticket.id,
        prize_amount=prize_pool,
        total_tickets_in_raffle=total_tickets,
        selection_method=method,
        selection_timestamp=now,
        prize_claimed=False,
    )
    session.add(winner)
    await session.flush()

    stamped = await session.execute(
        update(WeeklyRaffle)
        .where(WeeklyRaffle.week_number == week_number)
        .where(WeeklyRaffle.status == "completed")
        .where(WeeklyRaffle.winner_address.is_(None))
        .values(
            winner_address=ticket.owner_address,
            winning_ticket_number=ticket.ticket_number,
            winner_selected_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if stamped.rowcount != 1:
        raise StorageConflict("Raffle winner fields already set", week_number=week_number)
    return winner


async def _week_tickets(session: AsyncSession, week_number: int) -> list[RaffleTicket]:
    result = await session.execute(
        select(RaffleTicket)
        .where(RaffleTicket.week_number == week_number)
        .order_by(RaffleTicket.ticket_number.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ===============================================================
# 3. Sweep
# ===============================================================
async def close_raffle(session: AsyncSession, week_number: int, now: datetime | None = None) -> dict:
    """
    Close one due raffle and draw its winner, all in one transaction.
    Returns {"status": "skipped"} when another sweep already closed it.
    """
    now = now or utcnow()
    try:
        if not await _close(session, week_number):
            await session.rollback()
            logger.debug(f"⏭️ Week {week_number} already closed elsewhere, skipping")
            return {"week_number": week_number, "status": "skipped"}

        tickets = await _week_tickets(session, week_number)
        if not tickets:
            await session.commit()
            logger.info(f"📭 Week {week_number} closed with no tickets, no winner")
            return {"week_number": week_number, "status": "completed", "winner": None}

        ticket = tickets[draw_index(len(tickets))]
        winner = await _assign_winner(session, week_number, ticket, len(tickets), "random", now)
        await session.commit()
    except (IntegrityError, StorageConflict) as e:
        # Lost a race with another sweep or a manual override
        await session.rollback()
        logger.warning(f"⚠️ Week {week_number} close lost a race, rolled back: {e}")
        return {"week_number": week_number, "status": "skipped"}

    logger.info(
        f"🎉 Week {week_number} winner: ticket #{ticket.ticket_number} "
        f"({mask_sensitive(ticket.owner_address)}) of {len(tickets)}, prize {winner.prize_amount}"
    )
    return {"week_number": week_number, "status": "completed", "winner": winner_to_dict(winner)}


async def process_due_raffles(session: AsyncSession, now: datetime | None = None, prize_sender=None) -> dict:
    """
    Close every active raffle whose end_at has passed, pay winners when a
    prize sender is configured, then make sure next week's raffle exists.
    """
    now = now or utcnow()
    due_weeks = (
        await session.execute(
            select(WeeklyRaffle.week_number)
            .where(WeeklyRaffle.status == "active")
            .where(WeeklyRaffle.end_at < now)
            .order_by(WeeklyRaffle.week_number.asc())
        )
    ).scalars().all()

    processed, payout_failures = [], []
    for week_number in due_weeks:
        outcome = await close_raffle(session, week_number, now=now)
        processed.append(outcome)

        winner = outcome.get("winner")
        if prize_sender is None or not winner:
            continue
        try:
            await distribute_prize(session, week_number, prize_sender, now=now)
        except PayoutFailed as e:
            payout_failures.append({"week_number": week_number, "error": e.message})

    next_raffle = await ensure_next_raffle_exists(session, now=now)
    if due_weeks:
        logger.info(f"🧹 Sweep processed weeks {list(due_weeks)}; open raffle is week {next_raffle.week_number}")
    return {
        "processed": processed,
        "payout_failures": payout_failures,
        "active_raffle": raffle_to_dict(next_raffle),
    }


# ===============================================================
# 4. Manual override
# ===============================================================
async def select_winner_manually(
    session: AsyncSession,
    week_number: int,
    ticket_id,
    now: datetime | None = None,
) -> dict:
    """
    Operator correction: make a specific ticket the week's winner.

    An active raffle is closed early through the same CAS the sweep uses.
    A week that already has a winner is rejected; the draw is never
    replaced.
    """
    now = now or utcnow()
    if not isinstance(week_number, int) or week_number < 1:
        raise ValidationError("week_number must be a positive integer", field="week_number")
    try:
        ticket_uuid = ticket_id if isinstance(ticket_id, uuid.UUID) else uuid.UUID(str(ticket_id))
    except ValueError:
        raise ValidationError("ticket_id must be a UUID", field="ticket_id")

    raffle = (
        await session.execute(
            select(WeeklyRaffle)
            .where(WeeklyRaffle.week_number == week_number)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if raffle is None:
        raise RaffleNotFound(week_number=week_number)

    existing = (
        await session.execute(select(RaffleWinner).where(RaffleWinner.week_number == week_number))
    ).scalar_one_or_none()
    if existing is not None or raffle.winner_address is not None:
        raise WinnerAlreadySelected(week_number=week_number)

    tickets = await _week_tickets(session, week_number)
    ticket = next((t for t in tickets if t.id == ticket_uuid), None)
    if ticket is None:
        raise TicketNotFound(week_number=week_number, ticket_id=str(ticket_uuid))

    try:
        if raffle.status == "active":
            if not await _close(session, week_number):
                raise StorageConflict("Raffle was closed concurrently", week_number=week_number)
        elif raffle.status != "completed":
            raise StorageConflict(f"Raffle is {raffle.status}", week_number=week_number)

        winner = await _assign_winner(session, week_number, ticket, len(tickets), "manual", now)
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise WinnerAlreadySelected(week_number=week_number)
    except StorageConflict:
        await session.rollback()
        raise

    logger.info(
        f"🛠️ Manual winner week={week_number}: ticket #{ticket.ticket_number} "
        f"({mask_sensitive(ticket.owner_address)})"
    )
    return winner_to_dict(winner)


# ===============================================================
# 5. Read models: stats & history
# ===============================================================
async def get_raffle_stats(session: AsyncSession) -> dict:
    raffles = (
        await session.execute(
            select(
                func.count(WeeklyRaffle.id),
                func.coalesce(func.sum(WeeklyRaffle.tickets_sold), 0),
                func.coalesce(func.sum(WeeklyRaffle.prize_pool), 0),
            )
        )
    ).one()
    by_status = dict(
        (
            await session.execute(
                select(WeeklyRaffle.status, func.count(WeeklyRaffle.id)).group_by(WeeklyRaffle.status)
            )
        ).all()
    )
    completed_tickets = (
        await session.execute(
            select(func.coalesce(func.sum(WeeklyRaffle.tickets_sold), 0)).where(WeeklyRaffle.status == "completed")
        )
    ).scalar()
    distributed = (
        await session.execute(
            select(func.coalesce(func.sum(RaffleWinner.prize_amount), 0)).where(RaffleWinner.prize_claimed.is_(True))
        )
    ).scalar()
    pending_payouts = (
        await session.execute(
            select(func.count(RaffleWinner.id))
            .where(RaffleWinner.prize_claimed.is_(False))
            .where(RaffleWinner.prize_amount > 0)
        )
    ).scalar()
    failed_attempts = (
        await session.execute(select(func.count(PayoutAttempt.id)).where(PayoutAttempt.status == "failed"))
    ).scalar()
    quiz_total, quiz_correct = (
        await session.execute(
            select(
                func.count(UserQuizAttempt.id),
                func.coalesce(func.sum(case((UserQuizAttempt.is_correct.is_(True), 1), else_=0)), 0),
            )
        )
    ).one()

    completed = by_status.get("completed", 0)
    return {
        "total_raffles": raffles[0],
        "active_raffles": by_status.get("active", 0),
        "completed_raffles": completed,
        "total_tickets_sold": int(raffles[1]),
        "total_prize_pool": format_amount(raffles[2]),
        "total_prize_distributed": format_amount(distributed),
        "pending_payouts": pending_payouts,
        "failed_payout_attempts": failed_attempts,
        "total_quiz_attempts": quiz_total,
        "correct_quiz_answers": int(quiz_correct),
        "average_participation": round(int(completed_tickets) / completed, 2) if completed else 0.0,
    }


async def get_history(session: AsyncSession, kind: str = "raffles", limit: int = 10) -> list[dict]:
    limit = max(1, min(int(limit), 100))
    if kind == "winners":
        result = await session.execute(
            select(RaffleWinner).order_by(RaffleWinner.week_number.desc()).limit(limit)
        )
        return [winner_to_dict(w) for w in result.scalars().all()]
    if kind == "raffles":
        result = await session.execute(
            select(WeeklyRaffle)
            .where(WeeklyRaffle.status == "completed")
            .order_by(WeeklyRaffle.week_number.desc())
            .limit(limit)
        )
        return [raffle_to_dict(r) for r in result.scalars().all()]
    raise ValidationError("kind must be 'raffles' or 'winners'", field="kind")
