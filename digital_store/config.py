import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def _origins(raw):
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./digital_store.db")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "brl")

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
FRONTEND_URL = _origins(os.getenv(
    "FRONTEND_URL",
    "http://localhost:3000,http://localhost:5173,https://artfy.netlify.app",
))
PORT = int(os.getenv("PORT", 8000))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

JWT_SECRET = os.getenv("JWT_SECRET")

ORDER_STORE = os.getenv("ORDER_STORE", "memory")
ENTITLEMENT_WINDOW_SECONDS = int(os.getenv("ENTITLEMENT_WINDOW_SECONDS", 24 * 60 * 60))
ORDER_RETENTION_SECONDS = int(os.getenv("ORDER_RETENTION_SECONDS", 24 * 60 * 60))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", 15 * 60))
NOTIFICATION_DELAY_SECONDS = float(os.getenv("NOTIFICATION_DELAY_SECONDS", 1.0))

CATALOG_RETRY_ATTEMPTS = int(os.getenv("CATALOG_RETRY_ATTEMPTS", 2))
CATALOG_RETRY_DELAY = float(os.getenv("CATALOG_RETRY_DELAY", 0.5))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def is_production():
    return ENVIRONMENT == "production"
