# ===============================================================
# logging_setup.py
# ===============================================================
import logging
import os
import sys
import re
import sentry_sdk

# ------------------------------------------------
# Environment & log level
# ------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, LOG_LEVEL, logging.INFO)
SENTRY_DSN = os.getenv("SENTRY_DSN")  # optional, leave empty if not using
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")

# ------------------------------------------------
# 🔒 Secret Filter to hide tokens / API keys
# ------------------------------------------------
class SecretFilter(logging.Filter):
    BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
    TELEGRAM_TOKEN_PATTERN = re.compile(r"\b\d{9,10}:[A-Za-z0-9_-]{35,}\b")
    KEY_PATTERN = re.compile(
        r"((?:secret|token|key|password|signer_token)[^\s=:'\"]*['\"]?[:=]\s*['\"]?)([\w.-]+)",
        re.IGNORECASE,
    )

    def scrub(self, value: str) -> str:
        value = self.BEARER_PATTERN.sub(r"\1[SECRET]", value)
        value = self.TELEGRAM_TOKEN_PATTERN.sub("[SECRET]", value)
        return self.KEY_PATTERN.sub(r"\1[REDACTED]", value)

    def filter(self, record):
        record.msg = self.scrub(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self.scrub(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(self.scrub(str(a)) for a in record.args)
        return True

# ------------------------------------------------
# Configure root logger
# ------------------------------------------------
formatter = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    "%Y-%m-%d %H:%M:%S",
)
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(formatter)
handler.addFilter(SecretFilter())

root = logging.getLogger()
if not any(getattr(h, "_raffle_handler", False) for h in root.handlers):
    handler._raffle_handler = True
    root.addHandler(handler)
root.setLevel(numeric_level)

logger = logging.getLogger("RaffleCraftEngine")

# ------------------------------------------------
# Ensure uvicorn/gunicorn logs flow through this formatter
# ------------------------------------------------
for noisy in ("uvicorn", "uvicorn.error", "uvicorn.access",
              "gunicorn", "gunicorn.error", "gunicorn.access"):
    logging.getLogger(noisy).handlers = []
    logging.getLogger(noisy).propagate = True

# httpx logs every request URL at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

# ------------------------------------------------
# Optional: Initialize Sentry
# ------------------------------------------------
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2")),
        environment=ENVIRONMENT,
    )

logger.info("✅ Secure logger initialized (tokens masked from output).")


def capture_exception(exc: BaseException) -> None:
    """Forward an exception to Sentry when it is configured."""
    if SENTRY_DSN:
        sentry_sdk.capture_exception(exc)
