"""
Platform-wide exception hierarchy.

Services raise these types; the application registers one handler per type
(see ``formflow.utils.errors.register_error_handlers``) so every blueprint
answers with the same envelope and HTTP status.

Usage:
    from formflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="FormAssignment", resource_id=42)
    raise ValidationError("Form validation failed", details={"email": "..."})
"""


class UnauthorizedError(Exception):
    """Raised when the request carries no valid identity.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the caller is authenticated but not entitled to act.

    Covers wrong assignee, missing approval authority and template access.
    Maps to HTTP 403.
    """

    def __init__(self, message: str = "You are not allowed to perform this action") -> None:
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "FormTemplate").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule or field-level validation.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field ids;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation is illegal given the current state.

    Typical causes: mutating a finalised assignment, an out-of-table
    workflow transition, a concurrent writer (``StaleWorkflowState``) or a
    template that is still referenced by live assignments.

    Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        reason: Short machine-readable tag surfaced as ``details.reason``.
    """

    def __init__(self, message: str, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


STALE_WORKFLOW_STATE = "StaleWorkflowState"
