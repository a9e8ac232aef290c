# ================================================================
# services/views.py
# ================================================================
# Row → dict conversion for API payloads. Amounts are rendered as
# strings so no precision is lost in JSON.
from decimal import Decimal

from models import QuizQuestion, RaffleTicket, RaffleWinner, UserQuizAttempt, WeeklyRaffle


def format_amount(value) -> str | None:
    if value is None:
        return None
    return format(Decimal(str(value)).normalize(), "f")


def _ts(value):
    return value.isoformat() if value else None


def raffle_to_dict(raffle: WeeklyRaffle) -> dict:
    return {
        "week_number": raffle.week_number,
        "status": raffle.status,
        "start_at": _ts(raffle.start_at),
        "end_at": _ts(raffle.end_at),
        "ticket_price": format_amount(raffle.ticket_price),
        "prize_pool": format_amount(raffle.prize_pool),
        "tickets_sold": raffle.tickets_sold,
        "winner_address": raffle.winner_address,
        "winning_ticket_number": raffle.winning_ticket_number,
        "winner_selected_at": _ts(raffle.winner_selected_at),
    }


def question_to_public_dict(question: QuizQuestion) -> dict:
    """Question metadata safe to show before answering (no correct answer)."""
    return {
        "question_id": question.id,
        "week_number": question.week_number,
        "question_text": question.question_text,
        "question_type": question.question_type,
        "options": question.options or [],
        "difficulty": question.difficulty,
        "category": question.category,
        "points_reward": question.points_reward,
    }


def attempt_to_dict(attempt: UserQuizAttempt) -> dict:
    return {
        "user_address": attempt.user_address,
        "week_number": attempt.week_number,
        "quiz_question_id": attempt.quiz_question_id,
        "user_answer": attempt.user_answer,
        "is_correct": attempt.is_correct,
        "points_earned": attempt.points_earned,
        "can_mint_ticket": attempt.can_mint_ticket,
        "time_taken_seconds": attempt.time_taken_seconds,
        "attempted_at": _ts(attempt.attempted_at),
    }


def ticket_to_dict(ticket: RaffleTicket) -> dict:
    return {
        "ticket_id": str(ticket.id),
        "week_number": ticket.week_number,
        "ticket_number": ticket.ticket_number,
        "owner_address": ticket.owner_address,
        "transaction_hash": ticket.transaction_hash,
        "amount_paid": format_amount(ticket.amount_paid),
        "gas_fee": format_amount(ticket.gas_fee),
        "block_number": ticket.block_number,
        "is_winning_ticket": ticket.is_winning_ticket,
        "minted_at": _ts(ticket.minted_at),
    }


def winner_to_dict(winner: RaffleWinner) -> dict:
    return {
        "week_number": winner.week_number,
        "winner_address": winner.winner_address,
        "winning_ticket_id": str(winner.winning_ticket_id),
        "prize_amount": format_amount(winner.prize_amount),
        "total_tickets_in_raffle": winner.total_tickets_in_raffle,
        "selection_method": winner.selection_method,
        "selection_timestamp": _ts(winner.selection_timestamp),
        "prize_claimed": winner.prize_claimed,
        "prize_distribution_hash": winner.prize_distribution_hash,
        "prize_claimed_at": _ts(winner.prize_claimed_at),
    }
