# ======================================
# config.py
# (Loads raffle engine environment variables)
# ======================================
import os
from decimal import Decimal
from dotenv import load_dotenv

# Load .env when running locally
load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ----------------------
# Chain / Ledger
# ----------------------
SUI_RPC_URL = os.getenv("SUI_RPC_URL", "https://fullnode.mainnet.sui.io:443")
RAFFLE_TREASURY_ADDRESS = (os.getenv("RAFFLE_TREASURY_ADDRESS") or "").strip().lower()
CHAIN_TIMEOUT_SECONDS = float(os.getenv("CHAIN_TIMEOUT_SECONDS", "15"))

SUI_COIN_TYPE = "0x2::sui::SUI"
MIST_PER_SUI = Decimal(1_000_000_000)

# ----------------------
# Raffle rules
# ----------------------
TICKET_PRICE_SUI = Decimal(os.getenv("TICKET_PRICE_SUI", "1.0"))
MIN_TICKET_PRICE_SUI = Decimal(os.getenv("MIN_TICKET_PRICE_SUI", "1.0"))
AMOUNT_TOLERANCE_SUI = Decimal(os.getenv("AMOUNT_TOLERANCE_SUI", "0.001"))
RAFFLE_DURATION_DAYS = int(os.getenv("RAFFLE_DURATION_DAYS", "7"))

# ----------------------
# Background tasks
# ----------------------
BACKGROUND_TASKS = _get_bool("BACKGROUND_TASKS", True)
RAFFLE_SWEEP_INTERVAL_SECONDS = int(os.getenv("RAFFLE_SWEEP_INTERVAL_SECONDS", "3600"))
PAYOUT_RETRY_INTERVAL_SECONDS = int(os.getenv("PAYOUT_RETRY_INTERVAL_SECONDS", "600"))

# ----------------------
# Payouts (external treasury signer)
# ----------------------
PAYOUT_SIGNER_URL = os.getenv("PAYOUT_SIGNER_URL")
PAYOUT_SIGNER_TOKEN = os.getenv("PAYOUT_SIGNER_TOKEN")
PAYOUT_LEASE_SECONDS = int(os.getenv("PAYOUT_LEASE_SECONDS", "1800"))

# ----------------------
# Admin / API
# ----------------------
RAFFLE_ADMIN_TOKEN = os.getenv("RAFFLE_ADMIN_TOKEN")
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "30"))
QUIZ_QUESTIONS_PATH = os.getenv("QUIZ_QUESTIONS_PATH")
AUTO_CREATE_TABLES = _get_bool("AUTO_CREATE_TABLES", False)

# ----------------------
# Telegram (operator alerts, optional)
# ----------------------
BOT_TOKEN = os.getenv("BOT_TOKEN")
ADMIN_USER_ID = int(os.getenv("ADMIN_USER_ID", "0") or 0)
