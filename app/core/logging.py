"""
Structured Logging Infrastructure

JSON log lines with correlation IDs, so a single order transition or payout
can be followed from the HTTP request down to the outbox worker.
"""
import logging
import json
import sys
import uuid
from datetime import datetime, timezone
from typing import Any
from contextvars import ContextVar
from functools import wraps

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

# extra_data keys copied to the top level so log search can filter on them
INDEXED_KEYS = ("order_id", "remittance_id", "user_id", "message_id")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for key in INDEXED_KEYS:
                if key in extra_data:
                    log_entry[key] = extra_data[key]
            log_entry["extra"] = extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger accepting an ``extra_data`` dict on every level method.

    ``logger.info("Order delivered", extra_data={"order_id": 7})``
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = dict(extra or {})
            extra["extra_data"] = extra_data
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Filter that adds correlation_id to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines for production, plain text for local runs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Get current correlation ID, generating and persisting one if not set"""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """Decorator logging duration and outcome of an async operation.

    Errors are logged and re-raised unchanged.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = datetime.now(timezone.utc)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}: {e}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": (datetime.now(timezone.utc) - started).total_seconds(),
                        "error": str(e),
                    },
                    exc_info=True,
                )
                raise
            logger.debug(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": (datetime.now(timezone.utc) - started).total_seconds(),
                },
            )
            return result

        return wrapper
    return decorator
