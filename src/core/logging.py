"""
Structured Logging Configuration with structlog

Outputs JSON logs that are searchable in Azure Monitor, ELK, or CloudWatch.
Every log includes: task_id, version, operation, timestamp, and other context.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime
from contextvars import ContextVar

# Context variables for task-scoped logging
task_id_var: ContextVar[Optional[str]] = ContextVar("task_id", default=None)
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

# Application version
APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application context to every log entry."""
    event_dict["version"] = APP_VERSION

    task_id = task_id_var.get()
    if task_id:
        event_dict.setdefault("task_id", task_id)

    operation = operation_var.get()
    if operation:
        event_dict.setdefault("operation", operation)

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(task_id="abc123", operation="resize"):
            logger.info("operation_started")
    """

    def __init__(self, task_id: Optional[str] = None, operation: Optional[str] = None):
        self.task_id = task_id
        self.operation = operation
        self._task_id_token = None
        self._operation_token = None

    def __enter__(self):
        if self.task_id:
            self._task_id_token = task_id_var.set(self.task_id)
        if self.operation:
            self._operation_token = operation_var.set(self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._operation_token:
            operation_var.reset(self._operation_token)
        if self._task_id_token:
            task_id_var.reset(self._task_id_token)
        return False


# Example log output structure:
# {
#   "timestamp": "2024-05-20T10:00:00Z",
#   "level": "info",
#   "event": "operation_completed",
#   "operation": "thumbnail",
#   "task_id": "550e8400-e29b-41d4-a716-446655440000",
#   "version": "1.0.0",
#   "target_path": "processed/thumbnail/550e8400-e29b-41d4-a716-446655440000.jpg"
# }
