# ==================================================================
# services/tickets.py (ticket issuer + user eligibility snapshot)
# ==================================================================
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    DuplicateTransaction,
    NotEligible,
    RaffleNotActive,
    RaffleNotFound,
    SenderMismatch,
    StorageConflict,
)
from helpers import mask_sensitive, normalize_address, normalize_tx_hash, to_decimal, utcnow
from models import RaffleTicket, RaffleWinner, UserQuizAttempt, WeeklyRaffle
from services.ledger import LedgerVerifier, PaymentDetails
from services.quiz import get_active_raffle, get_attempt
from services.views import attempt_to_dict, format_amount, ticket_to_dict

logger = logging.getLogger(__name__)


# ===============================================================
# Lookups
# ===============================================================
async def get_ticket_by_hash(session: AsyncSession, transaction_hash: str) -> RaffleTicket | None:
    result = await session.execute(
        select(RaffleTicket).where(RaffleTicket.transaction_hash == transaction_hash)
    )
    return result.scalar_one_or_none()


async def get_user_tickets(session: AsyncSession, user_address: str, week_number: int | None = None) -> list[RaffleTicket]:
    stmt = select(RaffleTicket).where(RaffleTicket.owner_address == user_address)
    if week_number is not None:
        stmt = stmt.where(RaffleTicket.week_number == week_number)
    result = await session.execute(stmt.order_by(RaffleTicket.week_number.desc(), RaffleTicket.ticket_number))
    return list(result.scalars().all())


async def _get_raffle(session: AsyncSession, week_number: int) -> WeeklyRaffle | None:
    result = await session.execute(
        select(WeeklyRaffle)
        .where(WeeklyRaffle.week_number == week_number)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ===============================================================
# Eligibility
# ===============================================================
def _ineligibility_reason(
    attempt: UserQuizAttempt | None,
    has_ticket: bool,
    raffle: WeeklyRaffle | None,
    now: datetime,
) -> str | None:
    """None when the user may mint, otherwise the reason they may not."""
    if raffle is None:
        return "No raffle for this week"
    if raffle.status != "active" or raffle.end_at <= now:
        return "Raffle is not accepting entries"
    if attempt is None:
        return "Complete this week's quiz first"
    if not attempt.is_correct:
        return "Quiz answer was incorrect"
    if has_ticket:
        return "Ticket already minted for this week"
    return None


async def get_eligibility(
    session: AsyncSession,
    user_address: str,
    week_number: int,
    now: datetime | None = None,
) -> dict:
    user = normalize_address(user_address)
    now = now or utcnow()
    raffle = await _get_raffle(session, week_number)
    attempt = await get_attempt(session, user, week_number)
    has_ticket = bool(await get_user_tickets(session, user, week_number))
    reason = _ineligibility_reason(attempt, has_ticket, raffle, now)
    return {
        "can_mint": reason is None,
        "week_number": week_number,
        "reason": reason,
        "quiz_completed": attempt is not None,
        "answer_correct": bool(attempt and attempt.is_correct),
        "has_ticket": has_ticket,
    }


async def get_user_overview(session: AsyncSession, user_address: str, week_number: int | None = None) -> dict:
    """Tickets, quiz attempt and eligibility for one user and week (default: current week)."""
    user = normalize_address(user_address)
    if week_number is None:
        raffle = await get_active_raffle(session)
        if raffle is None:
            raise RaffleNotFound("No active raffle; pass an explicit week")
        week_number = raffle.week_number

    attempt = await get_attempt(session, user, week_number)
    tickets = await get_user_tickets(session, user, week_number)
    return {
        "user_address": user,
        "week_number": week_number,
        "tickets": [ticket_to_dict(t) for t in tickets],
        "quiz_attempt": attempt_to_dict(attempt) if attempt else None,
        "eligibility": await get_eligibility(session, user, week_number),
    }


# ===============================================================
# Verification dry run
# ===============================================================
async def precheck_payment(
    session: AsyncSession,
    verifier: LedgerVerifier,
    user_address: str,
    transaction_hash: str,
    expected_amount,
) -> PaymentDetails:
    """Verify a payment without minting. Fails early if the hash already minted a ticket."""
    tx_hash = normalize_tx_hash(transaction_hash)
    existing = await get_ticket_by_hash(session, tx_hash)
    if existing is not None:
        raise DuplicateTransaction(ticket=ticket_to_dict(existing))
    return await verifier.verify_payment(tx_hash, expected_amount, user_address)


# ===============================================================
# Mint
# ===============================================================
async def _raise_for_conflict(session: AsyncSession, user: str, week_number: int, tx_hash: str, exc: IntegrityError):
    """Map a failed ticket insert to the business error behind it."""
    existing = await get_ticket_by_hash(session, tx_hash)
    if existing is not None:
        raise DuplicateTransaction(ticket=ticket_to_dict(existing))
    if await get_user_tickets(session, user, week_number):
        raise NotEligible("Ticket already minted for this week", week_number=week_number)
    logger.error(f"❌ Unexpected ticket conflict week={week_number}: {exc.orig}")
    raise StorageConflict(week_number=week_number)


async def mint_ticket(
    session: AsyncSession,
    verifier: LedgerVerifier,
    user_address: str,
    week_number: int,
    transaction_hash: str,
    amount_paid,
    now: datetime | None = None,
) -> dict:
    """
    Turn a correct quiz attempt plus a verified payment into one ticket.

    Nothing is written until eligibility and payment verification both pass.
    The write itself is one transaction:
      1. bump tickets_sold / prize_pool on the raffle row, guarded by
         status = 'active' (this row is the per-week serialization point)
      2. read back tickets_sold as this ticket's number
      3. insert the ticket (unique hash, unique user/week, unique number)
    A failed insert rolls the counter back with it, so numbers stay gapless.
    """
    user = normalize_address(user_address)
    tx_hash = normalize_tx_hash(transaction_hash)
    claimed_amount = to_decimal(amount_paid)
    now = now or utcnow()

    # ---- 1. Idempotency & eligibility ----
    existing = await get_ticket_by_hash(session, tx_hash)
    if existing is not None:
        logger.info(f"🔁 Replayed mint for {mask_sensitive(tx_hash)} → ticket #{existing.ticket_number}")
        raise DuplicateTransaction(ticket=ticket_to_dict(existing))

    raffle = await _get_raffle(session, week_number)
    attempt = await get_attempt(session, user, week_number)
    has_ticket = bool(await get_user_tickets(session, user, week_number))
    reason = _ineligibility_reason(attempt, has_ticket, raffle, now)
    if reason is not None:
        if raffle is None:
            raise RaffleNotFound(reason, week_number=week_number)
        if raffle.status != "active" or raffle.end_at <= now:
            raise RaffleNotActive(reason, week_number=week_number)
        raise NotEligible(reason, week_number=week_number)

    # ---- 2. Verify the payment (network bound, no locks held) ----
    payment = await verifier.verify_payment(tx_hash, claimed_amount, user)
    if payment.transaction_hash != tx_hash or payment.sender_address != user:
        raise SenderMismatch(transaction_hash=tx_hash)

    # ---- 3. Counter bump + insert in one transaction ----
    try:
        result = await session.execute(
            update(WeeklyRaffle)
            .where(WeeklyRaffle.week_number == week_number)
            .where(WeeklyRaffle.status == "active")
            .where(WeeklyRaffle.end_at > now)
            .values(
                tickets_sold=WeeklyRaffle.tickets_sold + 1,
                prize_pool=WeeklyRaffle.prize_pool + payment.amount,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise RaffleNotActive("Raffle closed before the ticket was issued", week_number=week_number)

        ticket_number = (
            await session.execute(
                select(WeeklyRaffle.tickets_sold).where(WeeklyRaffle.week_number == week_number)
            )
        ).scalar_one()

        ticket = RaffleTicket(
            week_number=week_number,
            ticket_number=ticket_number,
            owner_address=user,
            transaction_hash=tx_hash,
            amount_paid=payment.amount,
            gas_fee=payment.gas_fee,
            block_number=payment.block_number,
            transaction_timestamp=payment.timestamp,
            minted_at=now,
        )
        session.add(ticket)
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        await _raise_for_conflict(session, user, week_number, tx_hash, e)

    logger.info(
        f"🎟️ Ticket #{ticket.ticket_number} minted week={week_number} "
        f"owner={mask_sensitive(user)} tx={mask_sensitive(tx_hash)} amount={payment.amount}"
    )
    return {
        "ticket_id": str(ticket.id),
        "ticket_number": ticket.ticket_number,
        "week_number": week_number,
        "amount_paid": format_amount(ticket.amount_paid),
        "transaction_hash": tx_hash,
    }


# ===============================================================
# Per-user raffle statistics
# ===============================================================
def _participation_streak(weeks: list[int]) -> int:
    """Consecutive weeks ending at the user's most recent ticket."""
    streak = 0
    expected = None
    for week in sorted(set(weeks), reverse=True):
        if expected is not None and week != expected:
            break
        streak += 1
        expected = week - 1
    return streak


async def get_user_raffle_stats(session: AsyncSession, user_address: str) -> dict:
    user = normalize_address(user_address)
    owned = (
        await session.execute(
            select(RaffleTicket)
            .where(RaffleTicket.owner_address == user)
            .order_by(RaffleTicket.minted_at.asc(), RaffleTicket.week_number.asc())
        )
    ).scalars().all()
    wins = (
        await session.execute(select(RaffleWinner).where(RaffleWinner.winner_address == user))
    ).scalars().all()

    total_spent = sum((Decimal(t.amount_paid) for t in owned), Decimal("0"))
    total_won = sum((Decimal(w.prize_amount) for w in wins), Decimal("0"))
    return {
        "user_address": user,
        "total_tickets_minted": len(owned),
        "total_amount_spent": format_amount(total_spent),
        "weeks_participated": len({t.week_number for t in owned}),
        "winning_tickets": len(wins),
        "total_winnings": format_amount(total_won),
        "average_ticket_price": format_amount(total_spent / len(owned)) if owned else "0",
        "first_ticket_date": owned[0].minted_at.isoformat() if owned else None,
        "last_ticket_date": owned[-1].minted_at.isoformat() if owned else None,
        "participation_streak": _participation_streak([t.week_number for t in owned]),
    }
