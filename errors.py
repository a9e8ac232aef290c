# ===============================================================
# errors.py
# ===============================================================
"""
Typed failures of the raffle engine.

Every error carries a stable `code` the client can branch on, the HTTP
status the API layer answers with, and whether retrying the same call
can succeed later. Engine operations raise these; app.py turns them into
JSON responses so none of them reach the caller as a generic 500.
"""


class RaffleError(Exception):
    """Base exception for all raffle engine errors."""

    code = "raffle_error"
    http_status = 400
    retryable = False
    default_message = "Raffle operation failed"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(RaffleError):
    code = "configuration_error"
    http_status = 503
    default_message = "Service is not configured for this operation"


class ValidationError(RaffleError):
    code = "validation_error"
    http_status = 422
    default_message = "Invalid input"


# ---------------------------------------------------------------
# Business-rule rejections (no side effect)
# ---------------------------------------------------------------
class BusinessRuleError(RaffleError):
    pass


class NotEligible(BusinessRuleError):
    code = "not_eligible"
    http_status = 403
    default_message = "Not eligible to mint a ticket this week"


class AlreadyAttempted(BusinessRuleError):
    code = "already_attempted"
    http_status = 409
    default_message = "Already attempted this week"


class QuestionNotFound(BusinessRuleError):
    code = "question_not_found"
    http_status = 404
    default_message = "Question not found for this week"


class RaffleNotActive(BusinessRuleError):
    code = "raffle_not_active"
    http_status = 409
    default_message = "Raffle is not accepting entries"


class RaffleNotFound(BusinessRuleError):
    code = "raffle_not_found"
    http_status = 404
    default_message = "Raffle not found"


class TicketNotFound(BusinessRuleError):
    code = "ticket_not_found"
    http_status = 404
    default_message = "Ticket not found for this raffle"


class WinnerNotFound(BusinessRuleError):
    code = "winner_not_found"
    http_status = 404
    default_message = "No winner recorded for this raffle"


class WinnerAlreadySelected(BusinessRuleError):
    code = "winner_already_selected"
    http_status = 409
    default_message = "A winner has already been selected for this raffle"


# ---------------------------------------------------------------
# Payment verification failures (ticket never created)
# ---------------------------------------------------------------
class PaymentVerificationError(RaffleError):
    default_message = "Payment verification failed"


class TransactionNotFound(PaymentVerificationError):
    code = "transaction_not_found"
    http_status = 404
    default_message = "Transaction not found on chain"


class TransactionNotFinalized(PaymentVerificationError):
    code = "transaction_not_finalized"
    http_status = 409
    retryable = True
    default_message = "Transaction is not finalized yet"


class TransactionFailed(PaymentVerificationError):
    code = "transaction_failed"
    default_message = "Transaction failed on chain"


class SenderMismatch(PaymentVerificationError):
    code = "sender_mismatch"
    default_message = "Transaction sender does not match user address"


class AmountMismatch(PaymentVerificationError):
    code = "amount_mismatch"
    default_message = "Transaction amount mismatch"


class BelowMinimum(PaymentVerificationError):
    code = "below_minimum"
    default_message = "Payment is below the minimum ticket price"


# ---------------------------------------------------------------
# Idempotency / concurrency
# ---------------------------------------------------------------
class DuplicateTransaction(RaffleError):
    code = "duplicate_transaction"
    http_status = 409
    default_message = "Transaction already used to mint a ticket"


class StorageConflict(RaffleError):
    code = "storage_conflict"
    http_status = 409
    default_message = "Concurrent update detected, re-check state"


# ---------------------------------------------------------------
# External capabilities
# ---------------------------------------------------------------
class LedgerUnavailable(RaffleError):
    code = "ledger_unavailable"
    http_status = 503
    retryable = True
    default_message = "Blockchain node unavailable, try again shortly"


class PayoutFailed(RaffleError):
    code = "payout_failed"
    http_status = 502
    retryable = True
    default_message = "Prize transfer failed"
