"""Centralised configuration loaded from environment variables and dotenv."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Paths ──────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# ── Finnhub feed ───────────────────────────────────────────────────────────
FINNHUB_API_KEY: str = os.getenv("FINNHUB_API_KEY", "demo")
FINNHUB_BASE_URL: str = os.getenv("FINNHUB_BASE_URL", "https://finnhub.io/api/v1")
PER_CATEGORY: int = int(os.getenv("FINPULSE_PER_CATEGORY", "10"))
FEEDS_FILE: Path = Path(
    os.getenv("FINPULSE_FEEDS_FILE", str(PROJECT_ROOT / "config" / "feeds.yml"))
)
HTTP_TIMEOUT: float = float(os.getenv("FINPULSE_HTTP_TIMEOUT", "15"))

# ── LLM ────────────────────────────────────────────────────────────────────
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_TIMEOUT: float = float(os.getenv("LLM_TIMEOUT", "30"))
EXTRACT_TEMPERATURE: float = float(os.getenv("EXTRACT_TEMPERATURE", "0.1"))
EXPLAIN_TEMPERATURE: float = float(os.getenv("EXPLAIN_TEMPERATURE", "0.4"))
TARGET_LANGUAGE: str = os.getenv("TARGET_LANGUAGE", "English")

# ── Storage / scheduling ──────────────────────────────────────────────────
DB_PATH: Path = Path(
    os.getenv("FINPULSE_DB_PATH", str(PROJECT_ROOT / "var" / "finpulse.sqlite3"))
)
INTERVAL_SECONDS: int = int(os.getenv("FINPULSE_INTERVAL_SECONDS", "3600"))


def llm_enabled() -> bool:
    """True when an AI credential is configured."""
    return bool(LLM_API_KEY)
