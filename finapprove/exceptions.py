"""
Typed workflow errors.

Every error carries a machine-readable ``code`` and the HTTP status the API
shell renders it with. Services raise these; ``main.py`` turns them into the
``{"error": {"code", "message"}}`` envelope.

    WorkflowError
    +-- ValidationError            422
    +-- AuthorizationError         403
    +-- NotFoundError              404
    +-- InvalidTransitionError     409
    |   +-- NoActiveStepError      409
    +-- ConcurrencyConflictError   409
    +-- DependencyFailure          (never surfaced, logged at the notification boundary)
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all finance workflow errors."""

    code: str = "WORKFLOW_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: Optional[object] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}


class ValidationError(WorkflowError):
    """Malformed input. ``details`` holds a field-level error list."""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        self.errors = errors or []
        super().__init__(message, details=self.errors or None)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])


class AuthorizationError(WorkflowError):
    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, identifier: str):
        self.entity_type = entity_type
        self.identifier = identifier
        super().__init__(f"{entity_type} not found: {identifier}")


class InvalidTransitionError(WorkflowError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current_status: str, action: str, message: Optional[str] = None):
        self.current_status = current_status
        self.action = action
        super().__init__(
            message or f"Cannot {action} a request in status {current_status}",
            details={"current_status": current_status, "action": action},
        )


class NoActiveStepError(InvalidTransitionError):
    code = "NO_ACTIVE_STEP"

    def __init__(self, request_id: str, current_status: str = "UNKNOWN"):
        self.request_id = request_id
        super().__init__(
            current_status,
            "act on",
            message=f"No active approval step for request {request_id}",
        )


class ConcurrencyConflictError(WorkflowError):
    """The active step changed underneath us. Re-fetch and retry once."""

    code = "CONCURRENCY_CONFLICT"
    status_code = 409

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "state changed by another transaction"
        )


class DependencyFailure(WorkflowError):
    """Notification or email delivery failed. Never propagated past dispatch."""

    code = "DEPENDENCY_FAILURE"
    status_code = 502
