# ===============================================================
# schemas.py (request bodies for the raffle API)
# ===============================================================
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from errors import ValidationError
from helpers import normalize_address, normalize_tx_hash


def _address(value: str) -> str:
    try:
        return normalize_address(value)
    except ValidationError as e:
        raise ValueError(e.message)


def _tx_hash(value: str) -> str:
    try:
        return normalize_tx_hash(value)
    except ValidationError as e:
        raise ValueError(e.message)


class QuizSubmitRequest(BaseModel):
    user_address: str
    week_number: int = Field(..., ge=1)
    quiz_question_id: int = Field(..., ge=1)
    user_answer: str = Field(..., min_length=1, max_length=500)
    time_taken_seconds: int | None = Field(default=None, ge=0, le=86400)

    @field_validator("user_address")
    @classmethod
    def check_address(cls, v: str) -> str:
        return _address(v)

    @field_validator("user_answer")
    @classmethod
    def answer_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Answer cannot be blank")
        return v


class TicketMintRequest(BaseModel):
    user_address: str
    week_number: int = Field(..., ge=1)
    transaction_hash: str
    amount_paid: Decimal = Field(..., gt=0, max_digits=28, decimal_places=9)

    @field_validator("user_address")
    @classmethod
    def check_address(cls, v: str) -> str:
        return _address(v)

    @field_validator("transaction_hash")
    @classmethod
    def check_hash(cls, v: str) -> str:
        return _tx_hash(v)


class ValidateTransactionRequest(BaseModel):
    user_address: str
    transaction_hash: str
    expected_amount: Decimal = Field(..., gt=0, max_digits=28, decimal_places=9)

    @field_validator("user_address")
    @classmethod
    def check_address(cls, v: str) -> str:
        return _address(v)

    @field_validator("transaction_hash")
    @classmethod
    def check_hash(cls, v: str) -> str:
        return _tx_hash(v)


class SelectWinnerRequest(BaseModel):
    week_number: int = Field(..., ge=1)
    ticket_id: UUID
