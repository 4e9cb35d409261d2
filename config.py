"""
config.py
Environment-driven settings (.env supported) + logging setup.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    ENV = os.getenv("ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = _int_env("PORT", 5000)

    DB_FILE = os.getenv("YTRACKER_DB") or str(Path(__file__).with_name("ytracker.db"))

    # Where the subscription cost for "money needed" comes from
    COST_SOURCE = os.getenv("COST_SOURCE", "settings")
    DEFAULT_SUBSCRIPTION_COST = _float_env("DEFAULT_SUBSCRIPTION_COST", 18.99)

    # Fixed window per client IP
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 15 * 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 100)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s: %(message)s",
    )
