# ========================================================
# tasks/periodic_tasks.py
# ========================================================
"""
Periodic background task manager for:
- Raffle sweep (close due weeks, draw winners, open next week)
- Unpaid prize retries
"""
import asyncio
from typing import Awaitable, Callable

import config
from logging_setup import capture_exception, logger

from . import notifier, sweeper


async def run_periodically(name: str, job: Callable[[], Awaitable], interval_seconds: float) -> None:
    """
    Run `job` forever, `interval_seconds` apart. A failing run is logged
    and reported; the loop keeps going until cancelled.
    """
    logger.info(f"🔁 {name} running every {interval_seconds}s")
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"❌ {name} run failed: {e}")
            capture_exception(e)
        await asyncio.sleep(interval_seconds)


# ------------------------------------------
# Start All Tasks
# ------------------------------------------
async def start_all_tasks(loop: asyncio.AbstractEventLoop = None) -> list[asyncio.Task]:
    if loop is None:
        loop = asyncio.get_running_loop()

    schedule = {
        "RaffleSweepLoop": (sweeper.sweep_once, config.RAFFLE_SWEEP_INTERVAL_SECONDS),
        "PayoutRetryLoop": (notifier.retry_payouts_once, config.PAYOUT_RETRY_INTERVAL_SECONDS),
    }
    tasks = [
        loop.create_task(run_periodically(name, job, interval), name=name)
        for name, (job, interval) in schedule.items()
    ]

    logger.info("🚀 All periodic background tasks are now running")
    return tasks
