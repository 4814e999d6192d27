"""
Configuration and logging setup.
"""
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

LOG_FORMAT = "{time} | {level: <8} | {name}:{function}:{line} - {message}"
AI_MODES = ("auto", "always", "never")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


@dataclass
class Settings:
    """Runtime settings for an ingestion run."""
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    ai_mode: str = "auto"
    ai_max_retries: int = 3
    ai_wins_ties: bool = False
    workers: int = 2
    log_level: str = "INFO"
    row_tolerance: float = 3.0
    column_gap: float = 15.0
    day_overlap: int = 200
    script_max_chars: int = 30000
    script_lookback: int = 5000
    script_overlap: int = 500

    @property
    def ai_enabled(self) -> bool:
        return self.ai_mode != "never" and bool(self.openai_api_key)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Read settings from the environment, loading a .env file first."""
        load_dotenv(env_file)

        ai_mode = os.getenv("AI_MODE", "auto").strip().lower()
        if ai_mode not in AI_MODES:
            logger.warning(f"Unknown AI_MODE={ai_mode!r}, using 'auto'")
            ai_mode = "auto"

        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            model=os.getenv("SCHEDULE_AI_MODEL", "gpt-4o-mini"),
            ai_mode=ai_mode,
            ai_max_retries=_env_int("AI_MAX_RETRIES", 3),
            ai_wins_ties=os.getenv("AI_WINS_TIES", "").strip().lower() in ("1", "true", "yes"),
            workers=max(1, _env_int("INGEST_WORKERS", 2)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            row_tolerance=_env_float("ROW_TOLERANCE", 3.0),
            column_gap=_env_float("COLUMN_GAP", 15.0),
            day_overlap=_env_int("DAY_OVERLAP", 200),
            script_max_chars=_env_int("SCRIPT_CHUNK_MAX_CHARS", 30000),
            script_lookback=_env_int("SCRIPT_CHUNK_LOOKBACK", 5000),
            script_overlap=_env_int("SCRIPT_CHUNK_OVERLAP", 500),
        )


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace loguru's default sink.

    Args:
        level: Minimum level for the stderr sink
        log_file: Optional path of a rotating DEBUG-level log file
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="10 days",
            format=LOG_FORMAT,
        )
