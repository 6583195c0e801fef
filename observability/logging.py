"""Logging setup for n8n-rag-sync.

Console output is colored text or JSON lines. Records emitted while a sync
run is active carry its ``run_id`` and ``trigger``.
"""

from __future__ import annotations
import logging
import sys
import json
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional, Iterator
from datetime import datetime, timezone
from pathlib import Path

SERVICE_NAME = "n8n-rag-sync"

RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message'
}

NOISY_LOGGERS = ("uvicorn.access", "httpx", "openai", "apscheduler", "aiohttp.access")

_run_id: ContextVar[Optional[str]] = ContextVar("sync_run_id", default=None)
_trigger: ContextVar[Optional[str]] = ContextVar("sync_trigger", default=None)


@contextmanager
def sync_run_context(run_id: str, trigger: str) -> Iterator[None]:
    """Tag every record logged inside the block with the sync run."""
    run_token = _run_id.set(run_id)
    trigger_token = _trigger.set(trigger)
    try:
        yield
    finally:
        _run_id.reset(run_token)
        _trigger.reset(trigger_token)


def current_run_id() -> Optional[str]:
    return _run_id.get()


class SyncRunFilter(logging.Filter):
    """Copies the active sync run onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id.get()
        record.trigger = _trigger.get()
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # run_id, trigger and anything passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in RESERVED_ATTRS and key not in log_entry and value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors, prefixed by the short run id when set."""
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        run_id = getattr(record, "run_id", None)
        run = f" [{run_id[:8]}]" if run_id else ""
        message = f"{timestamp} | {record.levelname:8} | {record.name}{run} | {record.getMessage()}"

        if self.use_colors and record.levelname in self.COLORS:
            message = f"{self.COLORS[record.levelname]}{message}{self.RESET}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(
    level: str = "INFO",
    service_name: str = SERVICE_NAME,
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure the root logger for the API service or the ingestion CLI.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name written into JSON records
        log_file: Optional file path; file output is always JSON
        use_json: Emit JSON lines on the console
        use_colors: Color console output when not JSON
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    run_filter = SyncRunFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.addFilter(run_filter)
    if use_json:
        console_handler.setFormatter(JSONFormatter(service_name))
    else:
        console_handler.setFormatter(ColoredFormatter(use_colors and sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.addFilter(run_filter)
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
