# ========================================================
# tasks/sweeper.py
# ========================================================
"""
Sweeper task: close due raffles, draw winners, open the next week.
Runs periodically (default: hourly). Safe to overlap with the admin
trigger or another replica's sweep.
"""

from db import get_async_session
from logging_setup import logger
from services.payout import build_prize_sender
from services.raffle import process_due_raffles
from tasks.notifier import alert_payout_failures, notify_admin


async def sweep_once() -> dict:
    async with get_async_session() as session:
        outcome = await process_due_raffles(session, prize_sender=build_prize_sender())

    for closed in outcome["processed"]:
        winner = closed.get("winner")
        if winner:
            await notify_admin(
                f"🎉 Week {closed['week_number']} winner drawn: {winner['winner_address']} "
                f"({winner['prize_amount']} SUI from {winner['total_tickets_in_raffle']} tickets)"
            )
    await alert_payout_failures(outcome["payout_failures"])

    if outcome["processed"]:
        logger.info(f"🧹 Sweep closed {len(outcome['processed'])} raffle(s)")
    return outcome
