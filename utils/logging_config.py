import logging
import logging.handlers
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.typing import FilteringBoundLogger


def configure_logging(
    log_level: str = "INFO",
    log_file: str = "analysis_server.log",
    log_dir: str = "logs",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> FilteringBoundLogger:
    """Configure structured logging with JSON format, trace IDs, and file rotation."""

    level = getattr(logging, log_level.upper(), logging.INFO)

    # Create logs directory
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # Shared processors; the stdlib handlers below receive the rendered JSON line
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    # File handler with rotation
    file_handler = logging.handlers.RotatingFileHandler(
        log_path / log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(level)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=[file_handler, console_handler],
        force=True,
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_trace_id() -> str:
    """Generate a unique trace ID for request tracking."""
    return str(uuid.uuid4())[:8]


def bind_request_trace(trace_id: Optional[str] = None) -> str:
    """Bind a trace ID into the context vars of the current task.

    Every logger used while serving the request picks it up through
    ``merge_contextvars``.
    """
    trace_id = trace_id or get_trace_id()
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)
    return trace_id


class LoggerMixin:
    """Mixin class to provide logging capabilities to any class."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._logger = structlog.get_logger(self.__class__.__name__)
        self._trace_id = get_trace_id()

    @property
    def logger(self) -> FilteringBoundLogger:
        """Get logger with bound trace ID."""
        return self._logger.bind(component=self.__class__.__name__, instance_id=self._trace_id)


def log_analysis_event(event_type: str, instrument: str, timeframe: str, **kwargs) -> Dict[str, Any]:
    """Helper to create consistent analysis event log entries."""
    return {
        "event_type": event_type,
        "instrument": instrument,
        "timeframe": timeframe,
        **kwargs
    }


def log_upstream_event(service: str, **kwargs) -> Dict[str, Any]:
    """Helper to create consistent upstream call log entries."""
    return {
        "service": service,
        **kwargs
    }


# Global logger instance
logger: FilteringBoundLogger = None


def init_logging():
    """Initialize global logging configuration."""
    global logger
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_file = os.getenv("LOG_FILE", "analysis_server.log")
    log_dir = os.getenv("LOG_DIR", "logs")
    logger = configure_logging(log_level=log_level, log_file=log_file, log_dir=log_dir)
    logger.info("Logging initialized", level=log_level, file=log_file)


def get_logger(name: str = None) -> FilteringBoundLogger:
    """Get a logger instance with optional name binding."""
    if logger is None:
        init_logging()

    if name:
        return logger.bind(component=name)
    return logger
