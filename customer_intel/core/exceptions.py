"""
Exception hierarchy for Customer Intelligence

Structured error handling with specific error types.
"""

from typing import Dict, Any, Optional


class IntelError(Exception):
    """Base exception for all customer intelligence errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DurableStoreError(IntelError):
    """Raised when the workflow store (Redis) cannot be reached or fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class WorkflowNotFoundError(IntelError):
    """Raised when an automation id has no workflow definition."""

    def __init__(self, automation_id: str):
        super().__init__(
            f"Automation {automation_id} not found",
            {"automation_id": automation_id}
        )


class DispatchError(IntelError):
    """Raised when a notification could not be delivered."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class InsufficientDataError(IntelError):
    """Raised when there is not enough history for an analysis."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
