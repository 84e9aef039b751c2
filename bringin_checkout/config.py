import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# 1 BTC = 100,000 EUR. Placeholder rate, not a market price.
BTC_EUR_RATE = _float("BTC_EUR_RATE", 100_000)

INVOICE_EXPIRY_MINUTES = _float("INVOICE_EXPIRY_MINUTES", 15)
MOCK_PAYMENT_DELAY_SECONDS = _float("MOCK_PAYMENT_DELAY_SECONDS", 12)
SESSION_RETENTION_MINUTES = _float("SESSION_RETENTION_MINUTES", 60)
CLEANUP_INTERVAL_MINUTES = _float("CLEANUP_INTERVAL_MINUTES", 10)
HTTP_TIMEOUT_SECONDS = _float("HTTP_TIMEOUT_SECONDS", 10)


def get_lightning_address():
    return os.getenv("BRINGIN_LN_ADDRESS") or None


def get_settlement_api_url():
    return os.getenv("SETTLEMENT_API_URL") or None


def get_settlement_api_key():
    return os.getenv("SETTLEMENT_API_KEY") or None


def is_preview_environment() -> bool:
    if os.getenv("PREVIEW", "").lower() in ("1", "true", "yes"):
        return True
    return os.getenv("VERCEL_ENV") == "preview"
