"""
Platform-wide exception hierarchy and error taxonomy.

Two families live here:

  1. Generic service errors (NotFoundError, ValidationError, ConflictError)
     that blueprints map to HTTP status codes once.

  2. The workflow/authorization taxonomy (ErrorCode). Authorization and
     state-machine failures are surfaced to callers as typed results
     (``Decision`` / ``TransitionResult``), never as generic faults. Inside
     the workflow engine they are raised as WorkflowError subclasses and
     converted at the engine's public boundary.

Usage:
    from tracker.core.exceptions import ErrorCode, IllegalTransition

    raise IllegalTransition(kind="timesheet", current="draft", action="approve")
"""

from enum import Enum


# ── Taxonomy ─────────────────────────────────────────────────────────────────


class ErrorKind(str, Enum):
    """Broad class of a failure, used by callers to pick messaging."""

    AUTHORIZATION = "authorization"
    STATE = "state"
    CONCURRENCY = "concurrency"
    VALIDATION = "validation"


class ErrorCode(str, Enum):
    NOT_A_MEMBER = "NotAMember"
    INSUFFICIENT_ROLE = "InsufficientRole"
    NOT_OWNER_OR_WRONG_STATE = "NotOwnerOrWrongState"
    WRONG_CHARGEABILITY_SIDE = "WrongChargeabilitySide"
    ILLEGAL_TRANSITION = "IllegalTransition"
    DUPLICATE_SIGNER = "DuplicateSigner"
    STALE_STATE = "StaleState"
    UNKNOWN_ROLE = "UnknownRole"
    REASON_REQUIRED = "ReasonRequired"
    NOT_FOUND = "NotFound"

    @property
    def kind(self) -> ErrorKind:
        return _CODE_KIND[self]

    @property
    def recoverable(self) -> bool:
        """Only StaleState may be retried (re-read, then re-submit)."""
        return self is ErrorCode.STALE_STATE


_CODE_KIND = {
    ErrorCode.NOT_A_MEMBER: ErrorKind.AUTHORIZATION,
    ErrorCode.INSUFFICIENT_ROLE: ErrorKind.AUTHORIZATION,
    ErrorCode.NOT_OWNER_OR_WRONG_STATE: ErrorKind.AUTHORIZATION,
    ErrorCode.WRONG_CHARGEABILITY_SIDE: ErrorKind.AUTHORIZATION,
    ErrorCode.ILLEGAL_TRANSITION: ErrorKind.STATE,
    ErrorCode.DUPLICATE_SIGNER: ErrorKind.STATE,
    ErrorCode.STALE_STATE: ErrorKind.CONCURRENCY,
    ErrorCode.UNKNOWN_ROLE: ErrorKind.VALIDATION,
    ErrorCode.REASON_REQUIRED: ErrorKind.VALIDATION,
    ErrorCode.NOT_FOUND: ErrorKind.VALIDATION,
}


class UnknownRole(ValueError):
    """Raised by the role registry for a role constant it does not know."""

    code = ErrorCode.UNKNOWN_ROLE

    def __init__(self, value) -> None:
        self.value = value
        super().__init__(f"Unknown role: {value!r}")


# ── Workflow errors (engine-internal, converted to results) ─────────────────


class WorkflowError(Exception):
    """Base for failures raised inside the workflow engine.

    Args:
        code: Taxonomy code.
        message: Human-readable explanation.
        details: Structured payload for the UI (current state, action, …).
    """

    code: ErrorCode = ErrorCode.ILLEGAL_TRANSITION

    def __init__(self, message: str, *, code: ErrorCode | None = None, details: dict | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind


class AuthorizationDenied(WorkflowError):
    """The permission evaluator denied the action; ``code`` is the deny reason."""

    def __init__(self, decision) -> None:
        super().__init__(
            decision.message,
            code=decision.reason,
            details={"role": decision.role.value if decision.role else None},
        )
        self.decision = decision


class IllegalTransition(WorkflowError):
    code = ErrorCode.ILLEGAL_TRANSITION

    def __init__(self, *, kind: str, current: str, action: str, reason: str | None = None) -> None:
        msg = f"Cannot '{action}' {kind} in status '{current}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"current_status": current, "action": action})
        self.current_status = current
        self.action = action


class DuplicateSigner(WorkflowError):
    code = ErrorCode.DUPLICATE_SIGNER

    def __init__(self, *, signer_id: int, side: str, other_side: str) -> None:
        super().__init__(
            f"User {signer_id} already signed as {other_side}; "
            f"a different user must sign as {side}",
            details={"signer_id": signer_id, "side": side, "other_side": other_side},
        )


class SelfApproval(WorkflowError):
    """Approver is the person the entity was booked for or by."""

    code = ErrorCode.DUPLICATE_SIGNER

    def __init__(self, *, approver_id: int, kind: str) -> None:
        super().__init__(
            f"User {approver_id} cannot approve their own {kind}; a different user must approve",
            details={"approver_id": approver_id, "action": "approve"},
        )


class StaleState(WorkflowError):
    code = ErrorCode.STALE_STATE

    def __init__(self, *, kind: str, entity_id: int, expected: dict, found: dict | None = None) -> None:
        super().__init__(
            f"{kind} {entity_id} changed since it was read; re-fetch and retry",
            details={"expected": expected, "found": found or {}},
        )


class ReasonRequired(WorkflowError):
    code = ErrorCode.REASON_REQUIRED

    def __init__(self, action: str) -> None:
        super().__init__(f"A non-empty reason is required to '{action}'", details={"action": action})


class EntityNotFound(WorkflowError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, kind: str, entity_id) -> None:
        super().__init__(f"{kind} id={entity_id} not found", details={"entity_id": entity_id})


# ── Generic service errors ───────────────────────────────────────────────────


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for both genuinely missing records and cross-project lookups, so a
    caller cannot learn whether a record exists in another project.

    Args:
        resource: Human-readable model/entity name (e.g. "Partner").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        project_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        project_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.project_id = project_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if project_id is not None:
            msg += f" (project={project_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a record.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} conflicts with current state")
