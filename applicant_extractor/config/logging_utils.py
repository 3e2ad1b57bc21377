"""
Logging utilities with daily rotation and optional structlog support.

Provides custom formatters for structured logging, category labeling, and emoji removal for Windows consoles.
Includes setup functions for configuring logging handlers and formatters.
"""

import logging
import re
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, cast

import structlog

_EMOJI_PATTERN = re.compile(
    r"[\U0001F300-\U0001F9FF]|[\u2700-\u27BF]|[\u2600-\u26FF]|[\u2300-\u23FF]"
)


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter with structured output and category labels.
    Adds a category label to each log record based on logger name.
    """

    # First match wins, so more specific module names come first.
    CATEGORY_MAP = {
        "batch_scheduler": "BATCH",
        "retry_policy": "RETRY",
        "orchestrat": "ORCHESTRATOR",
        "state_machine": "ORCHESTRATOR",
        "events": "EVENTS",
        "export": "EXPORT",
        "storage": "EXPORT",
        "auth": "LOGIN",
        "source": "SOURCE",
        "cli": "CLI",
    }

    def format(self, record):
        record.category = category_for(record.name)
        return super().format(record)


class ConsoleFormatter(StructuredFormatter):
    """
    Formatter that removes emojis for console output on Windows.
    Inherits category labeling from StructuredFormatter.
    """

    def format(self, record):
        formatted = super().format(record)
        # Remove emoji characters that can't be displayed in some consoles
        return _EMOJI_PATTERN.sub("", formatted)


def category_for(logger_name: str) -> str:
    """Category label for a logger name (GENERAL when nothing matches)."""
    name_lower = logger_name.lower() if isinstance(logger_name, str) else ""
    for key, label in StructuredFormatter.CATEGORY_MAP.items():
        if key in name_lower:
            return label
    return "GENERAL"


def setup_logging(
    log_dir: str = "logs",
    log_level: str = "INFO",
    log_file: str = "applicant_extractor.log",
    retention_days: int = 30,
    enable_console: bool = True,
    enable_structlog: bool = True,
) -> logging.Logger:
    """
    Set up logging with daily rotation and structured formatting

    Args:
        log_dir: Directory for log files
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Name of the log file
        retention_days: Number of days to retain log files
        enable_console: Whether to enable console output
        enable_structlog: Whether to configure structlog on top of stdlib logging

    Returns:
        Configured root logger
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)
    log_format = "[%(asctime)s] [%(levelname)s] [%(category)s] %(message)s"

    # File handler with daily rotation
    file_handler = TimedRotatingFileHandler(
        filename=log_path / log_file,
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(StructuredFormatter(log_format, datefmt="%Y-%m-%d %H:%M:%S"))

    handlers: list[logging.Handler] = [file_handler]
    if enable_console:
        # stderr keeps stdout free for the CLI summary
        console_handler = logging.StreamHandler(stream=sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(ConsoleFormatter(log_format, datefmt="%Y-%m-%d %H:%M:%S"))
        handlers.append(console_handler)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    # Optional structlog configuration that routes through stdlib logging
    if enable_structlog:
        processors = [
            _add_category,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeEncoder(),
            structlog.processors.KeyValueRenderer(key_order=["event", "category"]),
        ]

        structlog.configure(
            processors=cast(list[Any], processors),
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    return logging.getLogger()


def log_run_separator(logger: logging.Logger, job_id: str | None = None):
    """Log a visual separator for run start/end"""
    logger.info(f"{'=' * 60}")
    if job_id is not None:
        logger.info(f"START OF EXTRACTION FOR JOB {job_id}")
    else:
        logger.info("END OF EXTRACTION")
    logger.info(f"{'=' * 60}")


def log_phase_start(logger: logging.Logger, phase_name: str):
    """Log the start of a processing phase"""
    logger.info(f"--- {phase_name.upper()} ---")


def log_item_outcome(
    logger: logging.Logger,
    profile_id: str,
    name: str,
    success: bool,
    attempts: int,
    error: str | None = None,
):
    """
    Log a structured per-applicant outcome

    Args:
        logger: Logger instance
        profile_id: Applicant profile id
        name: Applicant display name
        success: Whether every requested operation succeeded
        attempts: Total attempts used across operations
        error: Failure message (optional)
    """
    outcome = "OK" if success else "FAILED"
    error_str = f" - {error}" if error else ""
    level = logging.INFO if success else logging.WARNING
    logger.log(
        level,
        f"Applicant {profile_id} ({name}): {outcome} after {attempts} attempt(s){error_str}",
    )


def get_logger(name: str, structured: bool = False) -> Any:
    """
    Get a logger for a specific module

    Args:
        name: Logger name (typically __name__)
        structured: If True, return structlog BoundLogger; otherwise stdlib logger

    Returns:
        Logger instance
    """
    if structured:
        return structlog.get_logger(name)
    return logging.getLogger(name)


def _add_category(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Processor that adds category based on logger name"""
    logger_name = event_dict.get("logger", "") or getattr(logger, "name", "")
    event_dict.setdefault("category", category_for(logger_name))
    return event_dict
