from __future__ import annotations

import os

FALLBACK_CURRENCY = "ETB"


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", FALLBACK_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return FALLBACK_CURRENCY


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./finance_insights.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_ACCOUNT_NAME = os.getenv("DEFAULT_ACCOUNT_NAME", "Cash")
SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
