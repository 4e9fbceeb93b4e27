"""
Logging Configuration Module
============================
Structured JSON logging with request context support.

This module provides:
- JSON formatted logging for production
- Text formatting for development
- Component-aware logging
- Request-scoped context (request id, username)
"""

import logging
import sys
import json
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pathlib import Path
from logging.handlers import RotatingFileHandler


# Request-scoped logging context, isolated per asyncio task
_log_context: ContextVar[Dict[str, Any]] = ContextVar("scanhub_log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """
    Set request-scoped logging context.

    Args:
        **kwargs: Context fields to set
    """
    context = dict(_log_context.get())
    context.update(kwargs)
    _log_context.set(context)


def clear_log_context() -> None:
    """Clear request-scoped logging context."""
    _log_context.set({})


def get_log_context() -> Dict[str, Any]:
    """
    Get current request-scoped logging context.

    Returns:
        Dict[str, Any]: Current context
    """
    return dict(_log_context.get())


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Produces JSON lines compatible with log aggregation systems
    like ELK, Splunk, or CloudWatch.
    """

    def __init__(self, include_timestamp: bool = True):
        """
        Initialize the JSON formatter.

        Args:
            include_timestamp: Include ISO8601 timestamp in output
        """
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            str: JSON formatted log line
        """
        log_data: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_data["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_data["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        if hasattr(record, "component"):
            log_data["component"] = record.component

        context = get_log_context()
        if context:
            log_data["context"] = context

        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter for development.

    Provides colorized output when running in a terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",      # Reset
    }

    def __init__(self, use_colors: bool = True):
        """
        Initialize the text formatter.

        Args:
            use_colors: Use ANSI colors in output
        """
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as human-readable text.

        Args:
            record: Log record to format

        Returns:
            str: Formatted log line
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            reset = self.COLORS["RESET"]
            level_str = f"{color}{level:8s}{reset}"
        else:
            level_str = f"{level:8s}"

        context_parts = []
        if hasattr(record, "component"):
            context_parts.append(f"component={record.component}")
        for key, value in get_log_context().items():
            context_parts.append(f"{key}={value}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        message = record.getMessage()

        if hasattr(record, "extra_data") and record.extra_data:
            message += f" | {record.extra_data}"

        output = f"{timestamp} | {level_str} | {record.name}{context_str} | {message}"

        if record.exc_info:
            output += f"\n{self.formatException(record.exc_info)}"

        return output


class ComponentLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with the emitting component.

    Structured key/value data goes through the ``data`` keyword:

        logger.info("File stored", data={"sha256": sha256})
    """

    def __init__(self, logger: logging.Logger, component: str):
        super().__init__(logger, {})
        self.component = component

    def process(
        self,
        msg: str,
        kwargs: Dict[str, Any],
    ) -> tuple:
        extra = kwargs.get("extra", {})
        extra["component"] = self.component
        data = kwargs.pop("data", None)
        if data:
            extra["extra_data"] = data
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    output: str = "stdout",
    file_path: Optional[str] = None,
    max_file_size: int = 10_000_000,
    backup_count: int = 5,
) -> None:
    """
    Configure global logging settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or text)
        output: Output destination (stdout, file, both)
        file_path: Path to log file (required if output includes file)
        max_file_size: Maximum log file size in bytes
        backup_count: Number of backup files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    if output in ("stdout", "both"):
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        root_logger.addHandler(stdout_handler)

    if output in ("file", "both") and file_path:
        log_path = Path(file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance by name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        logging.Logger: Configured logger instance
    """
    return logging.getLogger(name)


def get_component_logger(component: str, name: Optional[str] = None) -> ComponentLogger:
    """
    Get a logger instance stamped with a component name.

    Args:
        component: Component name (e.g. "content_store")
        name: Optional logger name (defaults to scanhub.<component>)

    Returns:
        ComponentLogger: Logger with component context
    """
    base_logger = logging.getLogger(name or f"scanhub.{component}")
    return ComponentLogger(base_logger, component)
