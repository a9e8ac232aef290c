# ================================================================
# services/payout.py
# PRIZE TRANSFER THROUGH AN INJECTED SENDER + PAYOUT AUDIT TRAIL
# ================================================================
import logging
from datetime import datetime, timedelta
from decimal import Decimal

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import config
from errors import PayoutFailed, WinnerNotFound
from helpers import mask_sensitive, utcnow
from models import PayoutAttempt, RaffleWinner
from services.views import format_amount

logger = logging.getLogger(__name__)


# ================================================================
# 🔌 SENDERS
# ================================================================
class PrizeSender:
    """Transfer capability: `send(to, amount)` returns the transfer's transaction hash."""

    async def send(self, to_address: str, amount: Decimal) -> str:
        raise NotImplementedError


class SignerServicePrizeSender(PrizeSender):
    """
    Asks an external treasury signer to transfer SUI.
    The signer owns the keys; this service never sees them.
    """

    def __init__(self, url: str, token: str | None = None, timeout: float = 30.0, transport=None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def send(self, to_address: str, amount: Decimal) -> str:
        payload = {
            "recipient": to_address,
            "amount_mist": int(Decimal(amount) * config.MIST_PER_SUI),
            "coin_type": config.SUI_COIN_TYPE,
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise PayoutFailed(f"Signer answered {e.response.status_code}")
        except httpx.HTTPError as e:
            raise PayoutFailed(f"Signer unreachable: {e.__class__.__name__}")
        except ValueError:
            raise PayoutFailed("Signer returned invalid JSON")

        digest = data.get("digest") or data.get("transaction_hash")
        if not digest:
            raise PayoutFailed(f"Signer response missing digest: {data}")
        return digest


def build_prize_sender() -> PrizeSender | None:
    if not config.PAYOUT_SIGNER_URL:
        return None
    return SignerServicePrizeSender(config.PAYOUT_SIGNER_URL, config.PAYOUT_SIGNER_TOKEN)


# ================================================================
# 💸 DISTRIBUTE ONE PRIZE
# ================================================================
async def distribute_prize(
    session: AsyncSession,
    week_number: int,
    sender: PrizeSender,
    now: datetime | None = None,
) -> dict:
    """
    Pay the week's winner once.

    An `in_flight` payout_attempts row is the claim: its partial unique
    index lets only one worker hold it per winner. On failure the attempt
    is marked `failed` and PayoutFailed is raised; the winner row is left
    untouched so the retry loop picks it up again.
    """
    now = now or utcnow()
    winner = (
        await session.execute(
            select(RaffleWinner)
            .where(RaffleWinner.week_number == week_number)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if winner is None:
        raise WinnerNotFound(week_number=week_number)

    result = {"week_number": week_number, "amount": format_amount(winner.prize_amount)}
    if winner.prize_claimed:
        return {**result, "status": "already_claimed", "transaction_hash": winner.prize_distribution_hash}
    if not winner.prize_amount or winner.prize_amount <= 0:
        return {**result, "status": "nothing_to_pay"}

    # ---- 1. Claim (release abandoned claims first) ----
    await session.execute(
        update(PayoutAttempt)
        .where(PayoutAttempt.winner_id == winner.id)
        .where(PayoutAttempt.status == "in_flight")
        .where(PayoutAttempt.started_at < now - timedelta(seconds=config.PAYOUT_LEASE_SECONDS))
        .values(status="abandoned", finished_at=now, error="claim lease expired")
        .execution_options(synchronize_session=False)
    )
    attempt = PayoutAttempt(winner_id=winner.id, status="in_flight", amount=winner.prize_amount, started_at=now)
    session.add(attempt)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info(f"⏳ Payout for week {week_number} already in flight elsewhere")
        return {**result, "status": "in_flight"}

    # A previous holder may have finished between our read and our claim
    paid_hash = (
        await session.execute(
            select(RaffleWinner.prize_distribution_hash)
            .where(RaffleWinner.id == winner.id)
            .where(RaffleWinner.prize_claimed.is_(True))
        )
    ).scalar_one_or_none()
    if paid_hash is not None:
        await session.execute(
            update(PayoutAttempt)
            .where(PayoutAttempt.id == attempt.id)
            .values(status="abandoned", error="prize already claimed", finished_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return {**result, "status": "already_claimed", "transaction_hash": paid_hash}

    # ---- 2. Send ----
    logger.info(f"📡 Sending prize {winner.prize_amount} SUI → {mask_sensitive(winner.winner_address)} (week {week_number})")
    try:
        tx_hash = await sender.send(winner.winner_address, winner.prize_amount)
    except Exception as e:
        error = e.message if isinstance(e, PayoutFailed) else f"{e.__class__.__name__}: {e}"
        await session.execute(
            update(PayoutAttempt)
            .where(PayoutAttempt.id == attempt.id)
            .values(status="failed", error=error[:1000], finished_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        logger.error(f"❌ Prize payout failed for week {week_number}: {error}")
        raise PayoutFailed(error, week_number=week_number)

    # ---- 3. Record ----
    await session.execute(
        update(PayoutAttempt)
        .where(PayoutAttempt.id == attempt.id)
        .values(status="sent", transaction_hash=tx_hash, finished_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    claimed = await session.execute(
        update(RaffleWinner)
        .where(RaffleWinner.id == winner.id)
        .where(RaffleWinner.prize_claimed.is_(False))
        .values(prize_claimed=True, prize_distribution_hash=tx_hash, prize_claimed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if claimed.rowcount != 1:
        logger.warning(f"⚠️ Week {week_number} prize was already marked claimed; transfer {mask_sensitive(tx_hash)} recorded on attempt only")

    logger.info(f"✅ Prize delivered for week {week_number} → tx {mask_sensitive(tx_hash)}")
    return {**result, "status": "sent", "transaction_hash": tx_hash}


# ================================================================
# 🔁 RETRY EVERY UNPAID PRIZE
# ================================================================
async def retry_unpaid_prizes(session: AsyncSession, sender: PrizeSender, now: datetime | None = None) -> dict:
    weeks = (
        await session.execute(
            select(RaffleWinner.week_number)
            .where(RaffleWinner.prize_claimed.is_(False))
            .where(RaffleWinner.prize_amount > 0)
            .order_by(RaffleWinner.week_number.asc())
        )
    ).scalars().all()

    sent, failed = [], []
    for week_number in weeks:
        try:
            outcome = await distribute_prize(session, week_number, sender, now=now)
        except PayoutFailed as e:
            failed.append({"week_number": week_number, "error": e.message})
            continue
        if outcome["status"] == "sent":
            sent.append(outcome)

    if weeks:
        logger.info(f"🔁 Payout retry: {len(sent)} sent, {len(failed)} failed of {len(weeks)} unpaid")
    return {"sent": sent, "failed": failed}
