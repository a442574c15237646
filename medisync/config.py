"""Runtime settings read from the environment (and an optional .env file)."""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(ENV_PATH)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (ValueError, TypeError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (ValueError, TypeError):
        return default


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name) or default
    return [item.strip() for item in raw.split(",") if item.strip()]


GEMINI_API_KEY = (os.getenv("GEMINI_API_KEY", "") or "").strip()
# Allow overriding the Gemini model via env; default to 2.5 flash
GEMINI_MODEL = (os.getenv("GEMINI_MODEL") or "gemini-2.5-flash").strip()
GEMINI_API_BASE = (
    os.getenv("GEMINI_API_BASE") or "https://generativelanguage.googleapis.com/v1beta"
).strip().rstrip("/")
GEMINI_TIMEOUT_S = _env_float("GEMINI_TIMEOUT_S", 30.0)

ANALYSIS_MAX_CONCURRENCY = max(1, _env_int("ANALYSIS_MAX_CONCURRENCY", 4))
ANALYSIS_ITEM_TIMEOUT_S = _env_float("ANALYSIS_ITEM_TIMEOUT_S", 120.0)
ANALYZE_RATE_LIMIT = (os.getenv("ANALYZE_RATE_LIMIT") or "10/minute").strip()

CORS_ORIGINS = _env_list("CORS_ORIGINS", "http://localhost:5173,http://localhost:8080")
