# ================================================================
# services/ledger.py
# ================================================================
"""
Ledger Verifier: the only boundary between untrusted chain data and the
raffle's durable state.

`SuiRpcClient` fetches a transaction block over JSON-RPC and reduces it to
a `ChainTransaction`. `LedgerVerifier.verify_payment` checks that snapshot
against what the user claims and returns `PaymentDetails` or raises a
`PaymentVerificationError`. Network trouble surfaces as `LedgerUnavailable`
so callers can retry instead of treating it as a bad payment.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import httpx

import config
from errors import (
    AmountMismatch,
    BelowMinimum,
    ConfigurationError,
    LedgerUnavailable,
    SenderMismatch,
    TransactionFailed,
    TransactionNotFinalized,
    TransactionNotFound,
)
from helpers import mask_sensitive, normalize_address, normalize_tx_hash, to_decimal

logger = logging.getLogger(__name__)

# Sui full nodes answer an unknown digest with this JSON-RPC error message
NOT_FOUND_MARKER = "could not find the referenced transaction"


@dataclass(frozen=True)
class ChainTransaction:
    digest: str
    sender: str
    status: str
    amount: Decimal
    gas_fee: Decimal
    finalized_block: int | None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class PaymentDetails:
    transaction_hash: str
    sender_address: str
    amount: Decimal
    gas_fee: Decimal
    block_number: int
    timestamp: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "transaction_hash": self.transaction_hash,
            "sender_address": self.sender_address,
            "amount": str(self.amount),
            "gas_fee": str(self.gas_fee),
            "block_number": self.block_number,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def mist_to_sui(value) -> Decimal:
    return Decimal(int(value)) / config.MIST_PER_SUI


# ------------------------------------------------------
# 1. Sui JSON-RPC client
# ------------------------------------------------------
class SuiRpcClient:
    """Read-only `sui_getTransactionBlock` client."""

    def __init__(
        self,
        rpc_url: str,
        treasury_address: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.treasury_address = treasury_address.lower()
        self.timeout = timeout
        self._transport = transport

    async def _call(self, method: str, params: list) -> dict:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"⏳ Chain RPC timeout on {method}: {e}")
            raise LedgerUnavailable("Blockchain node timed out")
        except httpx.HTTPStatusError as e:
            logger.error(f"🚫 Chain RPC {method} failed [{e.response.status_code}]")
            raise LedgerUnavailable(f"Blockchain node answered {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"🚫 Chain RPC {method} transport error: {e}")
            raise LedgerUnavailable("Blockchain node unreachable")

    async def get_transaction(self, digest: str) -> ChainTransaction | None:
        data = await self._call(
            "sui_getTransactionBlock",
            [digest, {"showInput": True, "showEffects": True, "showBalanceChanges": True}],
        )
        error = data.get("error")
        if error:
            message = str(error.get("message") or "") if isinstance(error, dict) else str(error)
            if NOT_FOUND_MARKER in message.lower():
                logger.info(f"🔎 Transaction {mask_sensitive(digest)} not found")
                return None
            # Internal errors, overload and rate limits say nothing about the payment
            logger.warning(f"⚠️ Chain RPC error for {mask_sensitive(digest)}: {error}")
            raise LedgerUnavailable("Blockchain node returned an error")
        if not data.get("result"):
            logger.info(f"🔎 Transaction {mask_sensitive(digest)} not found")
            return None
        return self.parse_transaction(data["result"])

    def parse_transaction(self, result: dict) -> ChainTransaction:
        effects = result.get("effects") or {}
        status = ((effects.get("status") or {}).get("status") or "unknown").lower()
        sender = (((result.get("transaction") or {}).get("data") or {}).get("sender") or "").lower()

        # Net SUI credited to the treasury
        received = 0
        for change in result.get("balanceChanges") or []:
            owner = change.get("owner") or {}
            if not isinstance(owner, dict) or (owner.get("AddressOwner") or "").lower() != self.treasury_address:
                continue
            if change.get("coinType") != config.SUI_COIN_TYPE:
                continue
            received += int(change.get("amount") or 0)

        gas = effects.get("gasUsed") or {}
        gas_mist = (
            int(gas.get("computationCost") or 0)
            + int(gas.get("storageCost") or 0)
            - int(gas.get("storageRebate") or 0)
        )

        checkpoint = result.get("checkpoint")
        timestamp_ms = result.get("timestampMs")

        return ChainTransaction(
            digest=result.get("digest", ""),
            sender=sender,
            status=status,
            amount=mist_to_sui(max(received, 0)),
            gas_fee=mist_to_sui(max(gas_mist, 0)),
            finalized_block=int(checkpoint) if checkpoint is not None else None,
            timestamp=(
                datetime.fromtimestamp(int(timestamp_ms) / 1000, tz=timezone.utc).replace(tzinfo=None)
                if timestamp_ms else None
            ),
        )


# ------------------------------------------------------
# 2. Verifier
# ------------------------------------------------------
class LedgerVerifier:
    def __init__(
        self,
        chain,
        min_amount: Decimal = config.MIN_TICKET_PRICE_SUI,
        tolerance: Decimal = config.AMOUNT_TOLERANCE_SUI,
    ):
        self.chain = chain
        self.min_amount = Decimal(min_amount)
        self.tolerance = Decimal(tolerance)

    async def verify_payment(self, transaction_hash: str, expected_amount, expected_sender: str) -> PaymentDetails:
        """
        Checks, in order:
          - the transaction exists
          - it succeeded and is finalized (has a checkpoint)
          - the sender is the expected user
          - the treasury received at least the minimum ticket price
          - the received amount matches the claimed one within tolerance
        """
        tx_hash = normalize_tx_hash(transaction_hash)
        sender = normalize_address(expected_sender)
        expected = to_decimal(expected_amount)

        tx = await self.chain.get_transaction(tx_hash)
        if tx is None:
            raise TransactionNotFound(transaction_hash=tx_hash)

        if tx.status == "failure":
            raise TransactionFailed(transaction_hash=tx_hash)
        if tx.status != "success" or tx.finalized_block is None:
            raise TransactionNotFinalized(transaction_hash=tx_hash, status=tx.status)

        if tx.sender.lower() != sender:
            logger.warning(
                f"⚠️ Sender mismatch on {mask_sensitive(tx_hash)}: "
                f"chain={mask_sensitive(tx.sender)} claimed={mask_sensitive(sender)}"
            )
            raise SenderMismatch(transaction_hash=tx_hash)

        if tx.amount < self.min_amount:
            raise BelowMinimum(
                f"Payment {tx.amount} SUI is below the minimum of {self.min_amount} SUI",
                actual=str(tx.amount),
                minimum=str(self.min_amount),
            )

        if abs(tx.amount - expected) > self.tolerance:
            raise AmountMismatch(
                f"Transaction amount mismatch: expected {expected} SUI, got {tx.amount} SUI",
                expected=str(expected),
                actual=str(tx.amount),
            )

        logger.info(f"🔎 Payment verified {mask_sensitive(tx_hash)} → {tx.amount} SUI (block {tx.finalized_block})")
        return PaymentDetails(
            transaction_hash=tx_hash,
            sender_address=tx.sender.lower(),
            amount=tx.amount,
            gas_fee=tx.gas_fee,
            block_number=tx.finalized_block,
            timestamp=tx.timestamp,
        )


def build_ledger_verifier() -> LedgerVerifier:
    if not config.RAFFLE_TREASURY_ADDRESS:
        raise ConfigurationError("RAFFLE_TREASURY_ADDRESS is not configured")
    chain = SuiRpcClient(
        config.SUI_RPC_URL,
        config.RAFFLE_TREASURY_ADDRESS,
        timeout=config.CHAIN_TIMEOUT_SECONDS,
    )
    return LedgerVerifier(chain)
