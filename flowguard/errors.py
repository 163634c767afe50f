# flowguard/errors.py
from typing import Any, Optional


class FlowguardError(Exception):
    """Base class for failures that are not rule violations."""


class OperationError(FlowguardError):
    """A diff operation was rejected or could not be applied."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class VersionStoreError(FlowguardError):
    pass


class WorkflowClientError(FlowguardError):
    pass
