"""Logging configuration for the automation service."""

import logging
import sys
from typing import Any
from uuid import UUID

from fusion_automation.core.config_file import get_settings

settings = get_settings()

# Create logger for application events
app_logger = logging.getLogger("fusion_automation")
app_logger.setLevel(settings.LOG_LEVEL.upper())

# Create logger for execution audit events
audit_logger = logging.getLogger("fusion_automation.audit")

# Create console handler with structured format
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(settings.LOG_LEVEL.upper())

# Create formatter
formatter = logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
console_handler.setFormatter(formatter)

# Add handler to the package logger if not already added
if not app_logger.handlers:
    app_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the application logger hierarchy.

    Args:
        name: Logger name, usually ``__name__``.

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


def log_execution_completed(
    rule_id: UUID,
    execution_id: UUID | None,
    status: str,
    successful_actions: int,
    failed_actions: int,
    duration_ms: int,
) -> None:
    """
    Log the outcome of one rule execution.

    Args:
        rule_id: Rule that was executed.
        execution_id: Audit record ID (None when the audit write failed).
        status: Aggregate execution status.
        successful_actions: Number of successful actions.
        failed_actions: Number of failed actions.
        duration_ms: Total execution duration in milliseconds.
    """
    audit_logger.info(
        f"Execution completed - rule_id={rule_id}, execution_id={execution_id}, "
        f"status={status}, successful={successful_actions}, failed={failed_actions}, "
        f"duration_ms={duration_ms}"
    )


def log_audit_write_failure(
    operation: str, record_id: Any, error: Exception
) -> None:
    """
    Log a failed audit write. Audit failures never interrupt the pipeline.

    Args:
        operation: Audit operation that failed (e.g., 'start_execution').
        record_id: ID of the record being written, if known.
        error: The underlying error.
    """
    audit_logger.error(
        f"Audit write failed - operation={operation}, record_id={record_id}, error={error}"
    )
