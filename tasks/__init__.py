# ====================================================================
# tasks/__init__.py
# ===================================================================
"""
Background loops of the raffle engine (sweeper + payout retries).

app.py starts them on startup when BACKGROUND_TASKS is on and cancels
them on shutdown. Starting twice in one process is a no-op.
"""
import asyncio
from typing import Dict

from logging_setup import logger

__all__ = ["start_background_tasks", "stop_background_tasks", "running_task_names"]

_tasks: Dict[str, asyncio.Task] = {}


def running_task_names() -> list[str]:
    return sorted(name for name, task in _tasks.items() if not task.done())


async def start_background_tasks() -> list[str]:
    from . import periodic_tasks

    if running_task_names():
        logger.warning("⚠️ Background tasks already running, not starting twice")
        return running_task_names()

    started = await periodic_tasks.start_all_tasks(asyncio.get_running_loop())
    _tasks.update({task.get_name(): task for task in started})
    logger.info(f"✅ Background tasks started: {', '.join(running_task_names())}")
    return running_task_names()


async def stop_background_tasks(timeout: float = 10.0) -> None:
    if not _tasks:
        return
    logger.info(f"🛑 Stopping {len(_tasks)} background task(s)...")

    for task in _tasks.values():
        task.cancel()
    done, pending = await asyncio.wait(_tasks.values(), timeout=timeout)

    for task in done:
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is not None:
            logger.error(f"⚠️ Task '{task.get_name()}' ended with error: {exc}")
    for task in pending:
        logger.error(f"⚠️ Task '{task.get_name()}' did not stop within {timeout}s")

    _tasks.clear()
    logger.info("✅ All background tasks stopped.")
