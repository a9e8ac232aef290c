# ===============================================================
# helpers.py
# ===============================================================
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from errors import ValidationError

ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40,64}$")
HEX_HASH_RE = re.compile(r"^0x[0-9a-f]+$")
BASE58_HASH_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,64}$")


# -------------------------------------------------
# Time
# -------------------------------------------------
def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -------------------------------------------------
# Normalizers
# -------------------------------------------------
def normalize_address(address: str) -> str:
    """Lower-case and strip a wallet address. Raises ValidationError if malformed."""
    value = (address or "").strip().lower()
    if not ADDRESS_RE.match(value):
        raise ValidationError("Invalid wallet address", field="user_address")
    return value


def normalize_tx_hash(tx_hash: str) -> str:
    """
    Hex digests are case-insensitive, so they are lower-cased to keep one
    spelling per payment. Base58 digests are case-sensitive and kept as-is.
    """
    value = (tx_hash or "").strip()
    if not value:
        raise ValidationError("Transaction hash is required", field="transaction_hash")
    lowered = value.lower()
    if HEX_HASH_RE.match(lowered):
        return lowered
    if BASE58_HASH_RE.match(value):
        return value
    raise ValidationError("Invalid transaction hash", field="transaction_hash")


def normalize_answer(answer) -> str:
    """Trimmed, case-folded, inner whitespace collapsed."""
    return " ".join(str(answer or "").split()).casefold()


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")


# ----------------------------
# 🧩 Mask Sensitive Helper
# ----------------------------
def mask_sensitive(data: str, visible: int = 6) -> str:
    """Mask all but last few visible characters of sensitive data."""
    if not data:
        return ""
    data = str(data)
    if len(data) <= visible:
        return data
    return f"{'*' * (len(data) - visible)}{data[-visible:]}"
