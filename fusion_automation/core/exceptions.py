"""Custom exceptions for API error handling."""

from typing import Any

from fastapi import HTTPException, status


class APIException(HTTPException):
    """Custom exception for API errors with standard format.

    Example:
        raise APIException(
            code="AUTOMATION_RULE_NOT_FOUND",
            message="Rule not found",
            status_code=status.HTTP_404_NOT_FOUND
        )
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API exception.

        Args:
            code: Error code (e.g., 'AUTOMATION_RULE_INVALID', 'EXECUTION_NOT_FOUND').
            message: Human-readable error message.
            status_code: HTTP status code (default: 400).
            details: Optional additional error details.
        """
        super().__init__(
            status_code=status_code,
            detail={"error": {"code": code, "message": message, "details": details}},
        )
        self.code = code
        self.message = message
        self.details = details


# Helper functions for common error codes
def raise_not_found(resource: str, resource_id: str | None = None) -> None:
    """Raise 404 Not Found exception.

    Args:
        resource: Resource type (e.g., 'Automation rule', 'Execution').
        resource_id: Optional resource ID.

    Raises:
        APIException: 404 Not Found error.
    """
    message = f"{resource} not found"
    if resource_id:
        message += f" (ID: {resource_id})"
    raise APIException(
        code=f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
        message=message,
        status_code=status.HTTP_404_NOT_FOUND,
    )
