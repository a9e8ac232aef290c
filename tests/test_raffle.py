"""Tests for the raffle lifecycle: opening, closing, drawing and reporting."""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from errors import RaffleNotFound, TicketNotFound, ValidationError, WinnerAlreadySelected
from helpers import utcnow
from models import RaffleTicket, RaffleWinner, WeeklyRaffle
from services import raffle

LATER = timedelta(days=8)


def user(i):
    return "0x" + f"{i:02x}" * 32


@pytest.fixture
def seed_tickets(session_factory):
    """Insert `count` paid tickets for a week and bump its counters."""
    async def _seed(week_number, count, price="1.0"):
        async with session_factory() as s:
            raffle_row = (
                await s.execute(select(WeeklyRaffle).where(WeeklyRaffle.week_number == week_number))
            ).scalar_one()
            for n in range(1, count + 1):
                s.add(RaffleTicket(
                    week_number=week_number,
                    ticket_number=n,
                    owner_address=user(n),
                    transaction_hash=f"0x{week_number:04x}{n:060x}",
                    amount_paid=Decimal(price),
                    minted_at=utcnow(),
                ))
            raffle_row.tickets_sold = count
            raffle_row.prize_pool = Decimal(price) * count
            await s.commit()
    return _seed


async def week_state(session_factory, week_number):
    async with session_factory() as s:
        raffle_row = (
            await s.execute(select(WeeklyRaffle).where(WeeklyRaffle.week_number == week_number))
        ).scalar_one_or_none()
        winners = (
            await s.execute(select(RaffleWinner).where(RaffleWinner.week_number == week_number))
        ).scalars().all()
        winning = (
            await s.execute(
                select(RaffleTicket)
                .where(RaffleTicket.week_number == week_number)
                .where(RaffleTicket.is_winning_ticket.is_(True))
            )
        ).scalars().all()
    return raffle_row, winners, winning


# ------------------------------------------------
# Opening
# ------------------------------------------------
@pytest.mark.asyncio
async def test_first_raffle_is_week_one(session):
    created = await raffle.ensure_next_raffle_exists(session)
    assert created.week_number == 1
    assert created.status == "active"
    assert created.end_at - created.start_at == timedelta(days=7)


@pytest.mark.asyncio
async def test_existing_open_raffle_is_reused(session, make_raffle):
    await make_raffle(7)
    current = await raffle.ensure_next_raffle_exists(session)
    assert current.week_number == 7


@pytest.mark.asyncio
async def test_concurrent_ensure_creates_one_raffle(session_factory, make_raffle):
    await make_raffle(3, status="completed")

    async def ensure():
        async with session_factory() as s:
            return (await raffle.ensure_next_raffle_exists(s)).week_number

    weeks = await asyncio.gather(*(ensure() for _ in range(4)))
    assert set(weeks) == {4}

    async with session_factory() as s:
        active = (await s.execute(select(WeeklyRaffle).where(WeeklyRaffle.status == "active"))).scalars().all()
    assert [r.week_number for r in active] == [4]


# ------------------------------------------------
# Closing + draw
# ------------------------------------------------
@pytest.mark.asyncio
async def test_empty_raffle_closes_without_winner(session_factory, make_raffle):
    await make_raffle(7)
    async with session_factory() as s:
        outcome = await raffle.process_due_raffles(s, now=utcnow() + LATER)

    assert outcome["processed"] == [{"week_number": 7, "status": "completed", "winner": None}]
    assert outcome["active_raffle"]["week_number"] == 8

    raffle_row, winners, winning = await week_state(session_factory, 7)
    assert raffle_row.status == "completed"
    assert raffle_row.winner_address is None
    assert winners == [] and winning == []


@pytest.mark.asyncio
async def test_draw_picks_exactly_one_winner(session_factory, make_raffle, seed_tickets):
    await make_raffle(7)
    await seed_tickets(7, 50)

    async with session_factory() as s:
        outcome = await raffle.process_due_raffles(s, now=utcnow() + LATER)

    winner_view = outcome["processed"][0]["winner"]
    assert winner_view["prize_amount"] == "50"
    assert winner_view["total_tickets_in_raffle"] == 50
    assert winner_view["selection_method"] == "random"

    raffle_row, winners, winning = await week_state(session_factory, 7)
    assert raffle_row.status == "completed"
    assert len(winners) == 1 and len(winning) == 1
    assert winners[0].winning_ticket_id == winning[0].id
    assert winners[0].winner_address == winning[0].owner_address == raffle_row.winner_address
    assert raffle_row.winning_ticket_number == winning[0].ticket_number
    assert winners[0].prize_claimed is False


@pytest.mark.asyncio
async def test_draw_uses_the_random_index(session_factory, make_raffle, seed_tickets, monkeypatch):
    await make_raffle(7)
    await seed_tickets(7, 5)
    monkeypatch.setattr(raffle, "draw_index", lambda count: 3)

    async with session_factory() as s:
        await raffle.process_due_raffles(s, now=utcnow() + LATER)

    raffle_row, _, _ = await week_state(session_factory, 7)
    assert raffle_row.winning_ticket_number == 4
    assert raffle_row.winner_address == user(4)


@pytest.mark.asyncio
async def test_not_yet_due_raffle_is_left_alone(session_factory, make_raffle):
    await make_raffle(7)
    async with session_factory() as s:
        outcome = await raffle.process_due_raffles(s)

    assert outcome["processed"] == []
    assert outcome["active_raffle"]["week_number"] == 7


@pytest.mark.asyncio
async def test_concurrent_sweeps_pick_one_winner(session_factory, make_raffle, seed_tickets):
    await make_raffle(7)
    await seed_tickets(7, 10)
    now = utcnow() + LATER

    async def sweep():
        async with session_factory() as s:
            return await raffle.process_due_raffles(s, now=now)

    outcomes = await asyncio.gather(sweep(), sweep(), sweep())

    statuses = sorted(o["processed"][0]["status"] for o in outcomes if o["processed"])
    assert statuses.count("completed") == 1
    assert {o["active_raffle"]["week_number"] for o in outcomes} == {8}

    _, winners, winning = await week_state(session_factory, 7)
    assert len(winners) == 1 and len(winning) == 1


@pytest.mark.asyncio
async def test_second_close_is_skipped(session_factory, make_raffle, seed_tickets):
    await make_raffle(7, ends_in=timedelta(hours=-1))
    await seed_tickets(7, 3)

    async with session_factory() as s:
        first = await raffle.close_raffle(s, 7)
    async with session_factory() as s:
        second = await raffle.close_raffle(s, 7)

    assert first["status"] == "completed"
    assert second == {"week_number": 7, "status": "skipped"}


# ------------------------------------------------
# Manual override
# ------------------------------------------------
async def ticket_id(session_factory, week_number, number):
    async with session_factory() as s:
        return (
            await s.execute(
                select(RaffleTicket.id)
                .where(RaffleTicket.week_number == week_number)
                .where(RaffleTicket.ticket_number == number)
            )
        ).scalar_one()


@pytest.mark.asyncio
async def test_manual_selection_closes_active_raffle(session_factory, make_raffle, seed_tickets):
    await make_raffle(7)
    await seed_tickets(7, 4)
    chosen = await ticket_id(session_factory, 7, 2)

    async with session_factory() as s:
        winner = await raffle.select_winner_manually(s, 7, str(chosen))

    assert winner["selection_method"] == "manual"
    assert winner["winner_address"] == user(2)
    assert winner["prize_amount"] == "4"

    raffle_row, winners, winning = await week_state(session_factory, 7)
    assert raffle_row.status == "completed"
    assert raffle_row.winning_ticket_number == 2
    assert len(winners) == 1 and [t.id for t in winning] == [chosen]


@pytest.mark.asyncio
async def test_manual_selection_never_replaces_a_draw(session_factory, make_raffle, seed_tickets):
    await make_raffle(7)
    await seed_tickets(7, 3)
    async with session_factory() as s:
        await raffle.process_due_raffles(s, now=utcnow() + LATER)

    chosen = await ticket_id(session_factory, 7, 1)
    async with session_factory() as s:
        with pytest.raises(WinnerAlreadySelected):
            await raffle.select_winner_manually(s, 7, chosen)

    _, winners, winning = await week_state(session_factory, 7)
    assert len(winners) == 1 and len(winning) == 1


@pytest.mark.asyncio
async def test_manual_selection_on_empty_completed_raffle(session_factory, make_raffle, seed_tickets):
    """A completed week with no winner can take one manually."""
    await make_raffle(7, status="completed")
    await seed_tickets(7, 2)
    chosen = await ticket_id(session_factory, 7, 1)

    async with session_factory() as s:
        winner = await raffle.select_winner_manually(s, 7, chosen)
    assert winner["winner_address"] == user(1)


@pytest.mark.asyncio
async def test_manual_selection_rejects_foreign_ticket(session_factory, make_raffle, seed_tickets):
    await make_raffle(6, status="completed")
    await seed_tickets(6, 1)
    await make_raffle(7)
    foreign = await ticket_id(session_factory, 6, 1)

    async with session_factory() as s:
        with pytest.raises(TicketNotFound):
            await raffle.select_winner_manually(s, 7, foreign)
    async with session_factory() as s:
        with pytest.raises(TicketNotFound):
            await raffle.select_winner_manually(s, 7, uuid.uuid4())


@pytest.mark.asyncio
async def test_manual_selection_input_validation(session):
    with pytest.raises(ValidationError):
        await raffle.select_winner_manually(session, 0, uuid.uuid4())
    with pytest.raises(ValidationError):
        await raffle.select_winner_manually(session, 7, "not-a-uuid")
    with pytest.raises(RaffleNotFound):
        await raffle.select_winner_manually(session, 42, uuid.uuid4())


# ------------------------------------------------
# Stats + history
# ------------------------------------------------
@pytest.mark.asyncio
async def test_stats_and_history(session_factory, make_raffle, seed_tickets, week7, answer_quiz):
    await make_raffle(5, status="completed")
    await make_raffle(6, status="completed")
    await seed_tickets(6, 4, price="2.5")
    _, question = week7
    await answer_quiz(user(1), question)
    await answer_quiz(user(2), question, answer="Aptos")

    async with session_factory() as s:
        stats = await raffle.get_raffle_stats(s)
    assert stats["total_raffles"] == 3
    assert stats["active_raffles"] == 1
    assert stats["completed_raffles"] == 2
    assert stats["total_tickets_sold"] == 4
    assert stats["total_prize_pool"] == "10"
    assert stats["total_quiz_attempts"] == 2
    assert stats["correct_quiz_answers"] == 1
    assert stats["average_participation"] == 2.0

    async with session_factory() as s:
        history = await raffle.get_history(s, kind="raffles", limit=10)
        winners = await raffle.get_history(s, kind="winners")
    assert [r["week_number"] for r in history] == [6, 5]
    assert winners == []

    async with session_factory() as s:
        with pytest.raises(ValidationError):
            await raffle.get_history(s, kind="tickets")
