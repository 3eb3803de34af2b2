"""
Automate - Logging Configuration
Structured logging with optional JSON output.
"""

import logging
import sys
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pathlib import Path


ROOT_LOGGER_NAME = "automate"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logs"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for the console"""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        # Other handlers share the record, so restore the plain level name
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the "automate" logger tree.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR
        json_logs: Emit JSON lines (for the daemon under a supervisor)
        log_file: Optional path for a JSON log file

    Returns:
        The configured root "automate" logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))

    if json_logs:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


def setup_logging_from_env() -> logging.Logger:
    """Configure logging from AUTOMATE_LOG_LEVEL / AUTOMATE_LOG_JSON / AUTOMATE_LOG_FILE."""
    return setup_logging(
        log_level=os.environ.get("AUTOMATE_LOG_LEVEL", "INFO"),
        json_logs=os.environ.get("AUTOMATE_LOG_JSON", "").lower() in ("1", "true", "yes"),
        log_file=os.environ.get("AUTOMATE_LOG_FILE") or None,
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Attaches bound context (preset, run_id, ...) to every record"""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        data = dict(self.extra)
        data.update(extra.get("extra_data", {}))
        extra["extra_data"] = data
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context) -> "LoggerAdapter":
        """Return a new adapter with additional context."""
        merged = dict(self.extra)
        merged.update(context)
        return LoggerAdapter(self.logger, merged)


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger with bound context.

    Args:
        name: Logger name below "automate" (e.g. "executor")
        **context: Context fields (preset, run_id, schedule, ...)
    """
    base_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return LoggerAdapter(base_logger, context)


def log_step_result(
    logger: logging.LoggerAdapter,
    index: int,
    total: int,
    step_id: str,
    action: str,
    status: str,
    duration_ms: float,
    error: Optional[str] = None,
):
    """Log the outcome of one step."""
    data = {
        "step_id": step_id,
        "action": action,
        "status": status,
        "duration_ms": round(duration_ms, 1),
    }
    if error:
        data["error"] = error
    level = logging.ERROR if status == "error" else logging.INFO
    logger.log(
        level,
        f"[{index + 1}/{total}] {step_id} ({action}) -> {status}",
        extra={"extra_data": data}
    )


def log_error(
    logger: logging.LoggerAdapter,
    error: Exception,
    context: str = "",
    **extra
):
    """Log an exception with traceback."""
    logger.error(
        f"Error in {context}: {type(error).__name__}: {str(error)}",
        exc_info=True,
        extra={"extra_data": extra}
    )
