"""
Logging setup and console helpers shared by the CLI and the reconciler.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape


console = Console()

# LogRecord attributes copied into structured output when set via `extra=`
EXTRA_FIELDS = ("check_id", "action", "job_name")

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "pretty",
    log_file: Optional[Path] = None,
    console_output: bool = True,
) -> logging.Logger:
    """
    Configure the "dqsync" logger.

    Any handlers from a previous call are replaced.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "structured" (JSON lines) or "pretty" (rich, stderr)
        log_file: Also write records to this file
        console_output: Write records to stderr

    Returns:
        The configured logger
    """
    structured = log_format == "structured"
    handlers: list[logging.Handler] = []

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
        handlers.append(file_handler)

    if console_output:
        if structured:
            stream_handler = logging.StreamHandler()
            stream_handler.setFormatter(StructuredFormatter())
            handlers.append(stream_handler)
        else:
            handlers.append(RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=False))

    logger = logging.getLogger("dqsync")
    logger.setLevel(log_level.upper())
    logger.handlers = handlers
    return logger


def format_duration(seconds: float) -> str:
    """Render seconds as "45s", "1m 23s" or "2h 5m 0s"."""
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _print_marked(mark: str, style: str, message: str) -> None:
    console.print(f"[{style}]{mark}[/{style}] {escape(message)}")


def print_success(message: str) -> None:
    _print_marked("✓", "bold green", message)


def print_error(message: str) -> None:
    _print_marked("✗", "bold red", message)


def print_warning(message: str) -> None:
    _print_marked("⚠", "bold yellow", message)
