"""
Loom Logging — colorized dev output, JSON in production.

- Color formatter for terminals (auto-detects TTY)
- JSON structured formatter (LOOM_LOG_FORMAT=json)
- Quiets noisy SDK/HTTP loggers (httpx, httpcore, openai, anthropic)

Structured extra fields (logger.info(..., extra={...})):
    conversation_id, turn_id, provider, model, round, tool, duration_ms, status
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
    "RESET": "\033[0m",
    "DIM": "\033[2m",
}

_STRUCTURED_FIELDS = (
    "conversation_id",
    "turn_id",
    "provider",
    "model",
    "round",
    "tool",
    "duration_ms",
    "status",
)

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "openai",
    "openai._base_client",
    "anthropic",
    "anthropic._base_client",
    "uvicorn.access",
)


class ColorFormatter(logging.Formatter):
    """Terminal formatter; colors the level and dims the logger name."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        level_color = COLORS.get(record.levelname, "")
        reset = COLORS["RESET"]

        orig_levelname = record.levelname
        orig_name = record.name
        record.levelname = f"{level_color}{record.levelname}{reset}"
        record.name = f"{COLORS['DIM']}{record.name}{reset}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname
            record.name = orig_name


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, extra fields lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _should_use_color() -> bool:
    env_val = os.getenv("LOOM_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger. Call once at startup.

    Env vars:
        LOOM_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        LOOM_LOG_COLOR  — true / false / auto (default: auto)
        LOOM_LOG_FORMAT — text / json (default: text)
    """
    level_name = os.getenv("LOOM_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("LOOM_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("loom").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
