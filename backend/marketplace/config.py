import logging
import os
from pathlib import Path


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


DEFAULT_DB_PATH = str(Path(__file__).resolve().parents[1] / "data" / "marketplace.sqlite3")

DB_PATH = os.getenv("MARKETPLACE_DB_PATH", DEFAULT_DB_PATH)
# Civil zone used to bucket a preferred instant into weekday and time slot.
MATCH_TIMEZONE = os.getenv("MARKETPLACE_TIMEZONE", "Europe/Zurich")
SEED_DEMO_DATA = _env_flag("MARKETPLACE_SEED_DEMO", "true")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

# Push delivery stays off unless a service-account file is configured.
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH", "").strip()

CORS_ORIGINS = _parse_csv_env("CORS_ORIGINS", "*")
TRUSTED_HOSTS = _parse_csv_env("TRUSTED_HOSTS", "*")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_logging_configured = False


def configure_logging() -> None:
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format=LOG_FORMAT)
    _logging_configured = True
