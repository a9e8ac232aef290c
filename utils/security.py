# ===============================================================
# utils/security.py
# ===============================================================
import hmac
import logging

from fastapi import Header, HTTPException

import config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------
# 🔐 Admin bearer check (constant-time)
# ---------------------------------------------------------------
def is_valid_admin_token(authorization: str | None, expected: str | None) -> bool:
    if not authorization or not expected:
        return False
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip(), expected.strip())


async def require_admin(authorization: str | None = Header(default=None)) -> None:
    """FastAPI dependency guarding the admin routes."""
    if not config.RAFFLE_ADMIN_TOKEN:
        logger.error("❌ RAFFLE_ADMIN_TOKEN not configured; admin routes disabled")
        raise HTTPException(status_code=503, detail="Admin access is not configured")
    if not is_valid_admin_token(authorization, config.RAFFLE_ADMIN_TOKEN):
        logger.warning("🚫 Rejected admin request with invalid credentials")
        raise HTTPException(status_code=401, detail="Unauthorized")
