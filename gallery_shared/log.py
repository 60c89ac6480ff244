"""
Logging utilities with consistent formatting and emoji indicators.
"""
import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Final

# Emoji indicators for log levels
EMOJI_MAP: Final[dict[str, str]] = {
    "DEBUG": "🔍",
    "INFO": "ℹ️",
    "WARNING": "⚠️",
    "ERROR": "❌",
    "CRITICAL": "🔥",
    "SUCCESS": "✅",
}

# Global logger prefix
PREFIX: Final[str] = "🖼️ Gallery"

scan_id_var: ContextVar[str] = ContextVar("scan_id", default="")


class CorrelationFilter(logging.Filter):
    """Inject `scan_id` from `scan_id_var` into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            record.scan_id = scan_id_var.get("")
        except Exception:
            record.scan_id = ""
        return True


class EmojiFormatter(logging.Formatter):
    """Formatter that adds an emoji based on log level."""

    def format(self, record: logging.LogRecord) -> str:
        emoji = EMOJI_MAP.get(record.levelname, "🖼️")

        # Format: 🖼️ Gallery [✅] features.index.scanner [scan-1]: message
        try:
            sid = str(getattr(record, "scan_id", "") or "").strip()
        except Exception:
            sid = ""
        sid_part = f" [{sid}]" if sid else ""
        log_format = f"{PREFIX} [{emoji}] %(name)s{sid_part}: %(message)s"
        formatter = logging.Formatter(log_format)
        return formatter.format(record)


def _ensure_correlation_filter(logger: logging.Logger) -> None:
    if any(isinstance(f, CorrelationFilter) for f in list(logger.filters or [])):
        return
    logger.addFilter(CorrelationFilter())


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Get a logger with the Gallery prefix and emoji indicators.

    Args:
        name: Logger name (usually __name__)
        level: Optional logging level

    Returns:
        Configured logger instance
    """
    if name.startswith("__main__"):
        name = "main"
    elif "." in name:
        parts = name.split(".")
        if parts[0] in ("gallery_backend", "gallery_shared") and len(parts) > 1:
            name = ".".join(parts[1:])

    logger = logging.getLogger(f"gallery.{name}")
    _ensure_correlation_filter(logger)

    if level is not None:
        logger.setLevel(level)
    elif not logger.handlers:
        logger.setLevel(logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(EmojiFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    return logger


# Add SUCCESS level
SUCCESS_LEVEL: Final[int] = 25  # Between INFO (20) and WARNING (30)
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


def log_success(logger: logging.Logger, message: str, *args: Any) -> None:
    """Log a success message with the ✅ indicator."""
    logger.log(SUCCESS_LEVEL, message, *args)


def log_structured(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """Emit a structured JSON log entry with contextual fields."""
    payload = {
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "context": context,
    }
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
