"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. Nothing in the service layer
returns HTTP responses or swallows one of these errors.

Usage:
    from opexhub.core.exceptions import NotFoundError, ValidationGateFailedError

    raise NotFoundError(resource="Initiative", resource_id=42)
    raise ValidationGateFailedError("2 timeline entries not completed", gate="timeline_completed")

Workflow error kinds and their HTTP mapping:
    NotFoundError               404
    AlreadyProcessedError       409  (optimistic-concurrency loss)
    UnauthorizedError           403
    CommentRequiredError        400
    InvalidPayloadError         400
    ValidationGateFailedError   422
    ValidationError             422  (boundary field validation)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Initiative", "TimelineEntry").
        resource_id: The PK that was looked up.
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
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow engine errors ───────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for stage-action failures. ``code`` is machine-readable."""

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AlreadyProcessedError(WorkflowError):
    """The transaction is no longer pending (finalized by another call).

    Terminal information for the caller: refresh state, do not retry blindly.
    """

    code = "ALREADY_PROCESSED"

    def __init__(self, transaction_id: int, approve_status: str | None = None) -> None:
        self.transaction_id = transaction_id
        self.approve_status = approve_status
        msg = f"Workflow transaction id={transaction_id} has already been processed"
        if approve_status:
            msg += f" (status={approve_status})"
        super().__init__(msg, {"transaction_id": transaction_id, "approve_status": approve_status})


class UnauthorizedError(WorkflowError):
    """Actor fails the identity / role / site resolution for the operation."""

    code = "UNAUTHORIZED"


class CommentRequiredError(WorkflowError):
    """A stage action was submitted without a non-blank comment."""

    code = "COMMENT_REQUIRED"

    def __init__(self, message: str = "A comment is required for every workflow action") -> None:
        super().__init__(message)


class InvalidPayloadError(WorkflowError):
    """Stage-specific payload is missing or malformed."""

    code = "INVALID_PAYLOAD"


class ValidationGateFailedError(WorkflowError):
    """A stage precondition is not met. ``gate`` names the unmet condition."""

    code = "VALIDATION_GATE_FAILED"

    def __init__(self, reason: str, gate: str, details: dict | None = None) -> None:
        self.reason = reason
        self.gate = gate
        super().__init__(reason, {"gate": gate, **(details or {})})
