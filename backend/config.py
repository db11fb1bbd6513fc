import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("QUIKATTEND_DB_PATH", BASE_DIR / "database" / "quikattend.db"))
DEFAULT_SIGNING_KEY = "quikattend-signing-key-change-me"
# Shared by every worker and stable across restarts; tokens minted before a
# restart must still verify once their sessions are re-armed.
SIGNING_KEY = os.getenv("QUIKATTEND_SIGNING_KEY", "").strip() or DEFAULT_SIGNING_KEY
LOG_LEVEL = os.getenv("QUIKATTEND_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_seconds(value: str | None, fallback: float) -> float:
    if not value:
        return fallback
    try:
        parsed = float(value)
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("QUIKATTEND_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("QUIKATTEND_CORS_ALLOW_METHODS"),
    ["GET", "POST", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("QUIKATTEND_CORS_ALLOW_HEADERS"),
    ["Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("QUIKATTEND_CORS_ALLOW_CREDENTIALS"), True)

# Business window: how long a session stays ACTIVE after a generate request.
QR_WINDOW_SECONDS = _parse_seconds(os.getenv("QUIKATTEND_QR_WINDOW_SECONDS"), 60.0)
# Authentication window: how long a minted scan token is honoured.
TOKEN_EXPIRY_SECONDS = _parse_seconds(os.getenv("QUIKATTEND_TOKEN_EXPIRY_SECONDS"), 60.0)

RECOVERY_SWEEP_ON_STARTUP = _parse_bool(os.getenv("QUIKATTEND_RECOVERY_SWEEP_ON_STARTUP"), True)

QR_IMAGE_BOX_SIZE = int(os.getenv("QUIKATTEND_QR_IMAGE_BOX_SIZE", "8"))
QR_IMAGE_BORDER = int(os.getenv("QUIKATTEND_QR_IMAGE_BORDER", "2"))
