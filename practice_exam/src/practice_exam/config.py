"""
Runtime configuration for the practice exam engine.

Values come from the environment (optionally via a .env file).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8000/api"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Engine settings."""
    api_base_url: str = DEFAULT_API_URL
    api_timeout: float = 30.0
    store_path: Optional[str] = None  # None -> in-memory store
    time_sync_interval: int = 60      # seconds of countdown between time syncs
    timer_drift_corrected: bool = False
    require_fullscreen: bool = True
    fullscreen_exit_timeout: float = 2.0  # seconds to wait for fullscreen to close before submitting
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from environment variables, loading .env first."""
        load_dotenv(dotenv_path)

        level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        sync_interval = int(os.getenv("EXAM_TIME_SYNC_INTERVAL") or 60)
        if sync_interval <= 0:
            raise ValueError("EXAM_TIME_SYNC_INTERVAL must be a positive number of seconds")

        return cls(
            api_base_url=(os.getenv("PRACTICE_API_URL") or DEFAULT_API_URL).rstrip("/"),
            api_timeout=float(os.getenv("PRACTICE_API_TIMEOUT") or 30),
            store_path=(os.getenv("PRACTICE_STORE_PATH") or "").strip() or None,
            time_sync_interval=sync_interval,
            timer_drift_corrected=_env_bool("EXAM_TIMER_DRIFT_CORRECTED", "false"),
            require_fullscreen=_env_bool("EXAM_REQUIRE_FULLSCREEN", "true"),
            fullscreen_exit_timeout=float(os.getenv("EXAM_FULLSCREEN_EXIT_TIMEOUT") or 2),
            log_level=getattr(logging, level_name, logging.INFO),
        )
