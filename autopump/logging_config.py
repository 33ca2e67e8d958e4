"""
Structured Logging Configuration

Provides:
- Run IDs so every line of one pipeline run can be grepped together
- JSON formatting for machine parsing
- Human-readable console output
- Rotating general and error-only log files
"""

import contextvars
import json
import logging
import logging.handlers
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
from uuid import uuid4


run_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "run_id", default=None
)

# Loggers that can echo raw transaction payloads at DEBUG
NOISY_LOGGERS = ("solana", "solders", "httpx", "httpcore", "asyncpg", "aiohttp")


class RunContext:
    """Context manager that tags log records with a pipeline run ID."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or uuid4().hex[:12]
        self._token = None

    def __enter__(self):
        self._token = run_id_var.set(self.run_id)
        return self

    def __exit__(self, *args):
        run_id_var.reset(self._token)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        run_id = run_id_var.get()
        if run_id:
            log_data["run_id"] = run_id

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class StructuredFormatter(logging.Formatter):
    """Human-readable structured formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )

        level = record.levelname
        if self.use_color and sys.stdout.isatty():
            level = f"{self.COLORS.get(level, '')}{level}{self.COLORS['RESET']}"

        parts = [f"[{timestamp}]", f"[{level}]", f"[{record.name}]", record.getMessage()]

        run_id = run_id_var.get()
        if run_id:
            parts.append(f"[run_id={run_id}]")

        if record.exc_info:
            parts.append("\n" + "".join(traceback.format_exception(*record.exc_info)))

        return " ".join(parts)


def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    max_bytes: int,
    backup_count: int,
) -> logging.handlers.RotatingFileHandler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_dir: Union[str, Path] = "logs",
    log_file: str = "autopump.log",
    level: Union[str, int] = logging.INFO,
    json_format: bool = False,
    console_output: bool = True,
    max_bytes: int = 20 * 1024 * 1024,
    backup_count: int = 7,
) -> logging.Logger:
    """
    Configure logging for the fee burner process.

    Args:
        log_dir: Directory for log files
        log_file: Name of the general log file; errors go to <stem>_errors.log
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting for file logs
        console_output: Enable console output
        max_bytes: Max size of log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured root logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    file_formatter = JSONFormatter() if json_format else StructuredFormatter(use_color=False)
    root_logger.addHandler(_rotating_handler(log_path / log_file, level, file_formatter, max_bytes, backup_count))

    error_file = f"{Path(log_file).stem}_errors.log"
    root_logger.addHandler(
        _rotating_handler(log_path / error_file, logging.ERROR, file_formatter, max_bytes, backup_count)
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter(use_color=True))
        root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_run_id() -> Optional[str]:
    """Get the run ID of the current pipeline run, if any."""
    return run_id_var.get()
