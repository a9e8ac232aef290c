#=================================================================
# models.py (weekly raffle, quiz gate, tickets, winners, payouts)
#=================================================================
import uuid
from sqlalchemy import (
    Column, String, Integer, ForeignKey, Text, TIMESTAMP, CheckConstraint,
    Boolean, BigInteger, JSON, Numeric, Index, UniqueConstraint, Uuid, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from base import Base  # from base.py

# SUI amounts: 9 decimal places (1 MIST = 1e-9 SUI)
Amount = Numeric(28, 9)


# ================================================================
# 1. WEEKLY RAFFLES
# ================================================================
class WeeklyRaffle(Base):
    __tablename__ = "weekly_raffles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    week_number = Column(Integer, unique=True, nullable=False)
    status = Column(String(16), nullable=False, default="active")

    start_at = Column(TIMESTAMP, nullable=False)
    end_at = Column(TIMESTAMP, nullable=False)

    ticket_price = Column(Amount, nullable=False)
    prize_pool = Column(Amount, nullable=False, default=0)
    tickets_sold = Column(Integer, nullable=False, default=0)

    winner_address = Column(String(66), nullable=True)
    winning_ticket_number = Column(Integer, nullable=True)
    winner_selected_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())

    tickets = relationship("RaffleTicket", back_populates="raffle")

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'active', 'completed')",
            name="status_valid",
        ),
        CheckConstraint("tickets_sold >= 0", name="tickets_sold_non_negative"),
        # At most one raffle may be active at any time
        Index(
            "uq_weekly_raffles_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


# ================================================================
# 2. QUIZ QUESTIONS (authored out-of-band, one active per week)
# ================================================================
class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    week_number = Column(Integer, nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(20), nullable=False, default="multiple_choice")
    options = Column(JSON, nullable=True)
    correct_answer = Column(Text, nullable=False)
    explanation = Column(Text, nullable=True)
    difficulty = Column(String(10), nullable=False, default="medium")
    category = Column(String(50), nullable=True)
    points_reward = Column(Integer, nullable=False, default=15)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())

    __table_args__ = (
        CheckConstraint("difficulty IN ('easy', 'medium', 'hard')", name="difficulty_valid"),
        CheckConstraint(
            "question_type IN ('multiple_choice', 'true_false', 'text')",
            name="question_type_valid",
        ),
        UniqueConstraint("week_number", "question_text", name="uq_quiz_questions_week_text"),
    )


# ================================================================
# 3. QUIZ ATTEMPTS (one shot per user per week, never mutated)
# ================================================================
class UserQuizAttempt(Base):
    __tablename__ = "user_quiz_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_address = Column(String(66), nullable=False)
    week_number = Column(Integer, nullable=False)
    quiz_question_id = Column(Integer, ForeignKey("quiz_questions.id"), nullable=False)
    user_answer = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    points_earned = Column(Integer, nullable=False, default=0)
    can_mint_ticket = Column(Boolean, nullable=False, default=False)
    time_taken_seconds = Column(Integer, nullable=True)
    attempted_at = Column(TIMESTAMP, nullable=False)

    question = relationship("QuizQuestion")

    __table_args__ = (
        UniqueConstraint("user_address", "week_number", name="uq_user_quiz_attempts_user_week"),
    )


# ================================================================
# 4. RAFFLE TICKETS
# ================================================================
class RaffleTicket(Base):
    __tablename__ = "raffle_tickets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    week_number = Column(Integer, ForeignKey("weekly_raffles.week_number"), nullable=False)
    ticket_number = Column(Integer, nullable=False)
    owner_address = Column(String(66), nullable=False, index=True)

    transaction_hash = Column(String(128), unique=True, nullable=False)
    amount_paid = Column(Amount, nullable=False)
    gas_fee = Column(Amount, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    transaction_timestamp = Column(TIMESTAMP, nullable=True)

    is_winning_ticket = Column(Boolean, nullable=False, default=False)
    minted_at = Column(TIMESTAMP, nullable=False)

    raffle = relationship("WeeklyRaffle", back_populates="tickets")

    __table_args__ = (
        UniqueConstraint("week_number", "ticket_number", name="uq_raffle_tickets_week_ticket"),
        # One correct quiz attempt authorizes exactly one ticket
        UniqueConstraint("owner_address", "week_number", name="uq_raffle_tickets_owner_week"),
        CheckConstraint("ticket_number >= 1", name="ticket_number_positive"),
    )


# ================================================================
# 5. RAFFLE WINNERS
# ================================================================
class RaffleWinner(Base):
    __tablename__ = "raffle_winners"

    id = Column(Integer, primary_key=True, autoincrement=True)
    week_number = Column(Integer, ForeignKey("weekly_raffles.week_number"), unique=True, nullable=False)
    winner_address = Column(String(66), nullable=False)
    winning_ticket_id = Column(Uuid(as_uuid=True), ForeignKey("raffle_tickets.id"), nullable=False)
    prize_amount = Column(Amount, nullable=False)
    total_tickets_in_raffle = Column(Integer, nullable=False)
    selection_method = Column(String(10), nullable=False, default="random")
    selection_timestamp = Column(TIMESTAMP, nullable=False)

    # Only these are mutated after creation, by the payout notifier
    prize_claimed = Column(Boolean, nullable=False, default=False)
    prize_distribution_hash = Column(String(128), nullable=True)
    prize_claimed_at = Column(TIMESTAMP, nullable=True)

    winning_ticket = relationship("RaffleTicket")
    payout_attempts = relationship("PayoutAttempt", back_populates="winner")

    __table_args__ = (
        CheckConstraint("selection_method IN ('random', 'manual')", name="selection_method_valid"),
    )


# ================================================================
# 6. PAYOUT ATTEMPTS (audit trail + single in-flight claim per winner)
# ================================================================
class PayoutAttempt(Base):
    __tablename__ = "payout_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    winner_id = Column(Integer, ForeignKey("raffle_winners.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(16), nullable=False, default="in_flight")
    amount = Column(Amount, nullable=False)
    transaction_hash = Column(String(128), nullable=True)
    error = Column(Text, nullable=True)
    started_at = Column(TIMESTAMP, nullable=False)
    finished_at = Column(TIMESTAMP, nullable=True)

    winner = relationship("RaffleWinner", back_populates="payout_attempts")

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_flight', 'sent', 'failed', 'abandoned')",
            name="status_valid",
        ),
        Index(
            "uq_payout_attempts_single_in_flight",
            "winner_id",
            unique=True,
            postgresql_where=text("status = 'in_flight'"),
            sqlite_where=text("status = 'in_flight'"),
        ),
    )
