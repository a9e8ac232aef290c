# ================================================================
# tasks/notifier.py
# RETRY UNPAID PRIZES + ALERT OPERATORS ON FAILURE
# ================================================================
from telegram import Bot

import config
from db import get_async_session
from logging_setup import logger
from services.payout import build_prize_sender, retry_unpaid_prizes

_bot: Bot | None = None


def get_bot() -> Bot | None:
    """Telegram bot for operator alerts, or None when not configured."""
    global _bot
    if not config.BOT_TOKEN or not config.ADMIN_USER_ID:
        return None
    if _bot is None:
        _bot = Bot(token=config.BOT_TOKEN)
    return _bot


# ================================================================
# 📣 OPERATOR ALERT
# ================================================================
async def notify_admin(text: str) -> bool:
    bot = get_bot()
    if bot is None:
        logger.debug(f"Admin alert (Telegram not configured): {text}")
        return False
    try:
        await bot.send_message(chat_id=config.ADMIN_USER_ID, text=text)
        return True
    except Exception as e:
        logger.warning(f"Failed to notify admin: {e}")
        return False


async def alert_payout_failures(failures: list[dict]) -> None:
    if not failures:
        return
    lines = [f"• week {f['week_number']}: {f['error']}" for f in failures]
    await notify_admin("❌ Prize payout failed, will retry:\n" + "\n".join(lines))


# ================================================================
# 🔁 RETRY UNPAID PRIZES
# ================================================================
async def retry_payouts_once() -> dict | None:
    sender = build_prize_sender()
    if sender is None:
        logger.debug("Payout signer not configured; skipping prize retry")
        return None

    async with get_async_session() as session:
        outcome = await retry_unpaid_prizes(session, sender)

    await alert_payout_failures(outcome["failed"])
    for sent in outcome["sent"]:
        await notify_admin(f"✅ Prize sent: week {sent['week_number']}, {sent['amount']} SUI")
    return outcome

