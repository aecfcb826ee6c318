"""Custom exceptions for the automation engine."""

from typing import Any


class AutomationError(Exception):
    """Base exception for automation engine errors."""

    pass


class RuleValidationError(AutomationError):
    """Raised when a rule definition is malformed and cannot be registered."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize validation error.

        Args:
            message: Human-readable error message
            details: Optional per-field error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MissingFactError(AutomationError):
    """Raised when a condition references a fact or path that does not resolve."""

    def __init__(self, fact: str, path: str | None = None):
        self.fact = fact
        self.path = path
        target = f"{fact} (path {path})" if path else fact
        super().__init__(f"Fact not available: {target}")


class ActionError(AutomationError):
    """Base exception raised by action executors."""

    pass


class TransientActionError(ActionError):
    """Raised when an action fails for a reason that may succeed on retry."""

    pass


class PermanentActionError(ActionError):
    """Raised when an action fails and retrying cannot help."""

    pass


class AuditWriteError(AutomationError):
    """Raised when an execution audit record cannot be written."""

    pass


class HistoryQueryError(AutomationError):
    """Raised when the event-history store cannot answer a window query."""

    pass


class SchedulerResolutionError(AutomationError):
    """Raised when a cron expression / timezone pair cannot be resolved."""

    pass
