"""
Typed exception hierarchy for the ERP kernel.

Every error raised across a service boundary belongs to one of seven
closed categories.  Callers catch by category (``NotFoundError``) or by
the specific subclass (``HandlerNotRegisteredError``); both carry a
machine-readable ``code`` class attribute and structured attributes so
handlers can build responses without parsing message strings.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpError (base)
    |
    +-- NotFoundError
    |   +-- HandlerNotRegisteredError
    |
    +-- ValidationError
    |   +-- InvalidPaginationError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |   +-- InvalidCronExpressionError
    |   +-- JobStateError
    |   +-- InvalidWorkflowDefinitionError
    |   +-- NoMatchingWorkflowError
    |   +-- RequestNotActionableError
    |
    +-- ConflictError
    |   +-- DuplicateKeyError
    |   +-- VersionConflictError
    |   +-- WorkflowInUseError
    |
    +-- UnauthorizedError
    |
    +-- ForbiddenError
    |   +-- NotAnApproverError
    |   +-- DelegationNotAllowedError
    |   +-- CancellationNotPermittedError
    |
    +-- DatabaseError
    |
    +-- InternalError
        +-- HandlerTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
NotFound        | NOT_FOUND                   | Referenced row is absent
                | HANDLER_NOT_REGISTERED      | Job handler key has no registration
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Input rejected before any write
                | INVALID_PAGINATION          | page < 1 or per_page out of range
                | INVALID_CURRENCY            | Currency outside the supported set
                | CURRENCY_MISMATCH           | Money arithmetic across currencies
                | INVALID_CRON_EXPRESSION     | Cron string does not parse
                | JOB_STATE_ERROR             | Job status forbids the operation
                | INVALID_WORKFLOW_DEFINITION | Level numbering / approver counts
                | NO_MATCHING_WORKFLOW        | No workflow routes the document
                | REQUEST_NOT_ACTIONABLE      | Request status forbids the action
----------------|-----------------------------|-----------------------------------------
Conflict        | CONFLICT                    | Generic conflicting state
                | DUPLICATE_KEY               | Unique-key violation on insert/update
                | VERSION_CONFLICT            | Stale expected version on update
                | WORKFLOW_IN_USE             | Requests reference the workflow   
----------------|-----------------------------|-----------------------------------------
Unauthorized    | UNAUTHORIZED                | No authenticated actor
Forbidden       | FORBIDDEN                   | Actor lacks the right
                | NOT_AN_APPROVER             | Actor not eligible at current level
                | DELEGATION_NOT_ALLOWED      | Workflow disables delegation
                | CANCELLATION_NOT_PERMITTED  | Actor is neither requester nor admin
----------------|-----------------------------|-----------------------------------------
Database        | DATABASE_ERROR              | Store failure other than unique key
Internal        | INTERNAL_ERROR              | Unexpected failure
                | HANDLER_TIMEOUT             | Job handler exceeded its timeout
"""

from typing import Any


class ErpError(Exception):
    """
    Base exception for all ERP errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "ERP_ERROR"


# =============================================================================
# Categories
# =============================================================================


class NotFoundError(ErpError):
    """A referenced row does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = str(key)
        super().__init__(f"{entity} not found: {key}")


class ValidationError(ErpError):
    """Input was rejected before any state changed."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConflictError(ErpError):
    """The write conflicts with existing state."""

    code: str = "CONFLICT"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnauthorizedError(ErpError):
    code: str = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required"):
        self.message = message
        super().__init__(message)


class ForbiddenError(ErpError):
    code: str = "FORBIDDEN"

    def __init__(self, message: str = "Operation not permitted"):
        self.message = message
        super().__init__(message)


class DatabaseError(ErpError):
    """The relational store failed for a reason other than a unique key."""

    code: str = "DATABASE_ERROR"

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Database error: {cause}")


class InternalError(ErpError):
    code: str = "INTERNAL_ERROR"

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Internal error: {cause}")


# =============================================================================
# Validation
# =============================================================================


class InvalidPaginationError(ValidationError):
    code: str = "INVALID_PAGINATION"

    def __init__(self, page: int, per_page: int, max_per_page: int):
        self.page = page
        self.per_page = per_page
        self.max_per_page = max_per_page
        super().__init__(
            f"Invalid pagination page={page} per_page={per_page}: "
            f"page must be >= 1 and per_page within 1..{max_per_page}"
        )


class InvalidCurrencyError(ValidationError):
    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Unsupported currency code: {currency!r}")


class CurrencyMismatchError(ValidationError):
    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Currency mismatch: expected {expected}, got {actual}")


class InvalidCronExpressionError(ValidationError):
    """Cron expression failed to parse."""

    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression {expression!r}: {reason}")


class JobStateError(ValidationError):
    """The job's current status does not allow the requested operation."""

    code: str = "JOB_STATE_ERROR"

    def __init__(self, job_id: Any, status: str, operation: str):
        self.job_id = str(job_id)
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} job {job_id} in status {status}")


class InvalidWorkflowDefinitionError(ValidationError):
    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, workflow_code: str, errors: list[str]):
        self.workflow_code = workflow_code
        self.errors = list(errors)
        super().__init__(
            f"Workflow {workflow_code!r} is invalid: " + "; ".join(self.errors)
        )


class NoMatchingWorkflowError(ValidationError):
    """No active workflow routes this document type and amount."""

    code: str = "NO_MATCHING_WORKFLOW"

    def __init__(self, document_type: str, amount_minor: int):
        self.document_type = document_type
        self.amount_minor = amount_minor
        super().__init__(
            f"No active approval workflow for document type {document_type!r} "
            f"and amount {amount_minor}"
        )


class RequestNotActionableError(ValidationError):
    code: str = "REQUEST_NOT_ACTIONABLE"

    def __init__(self, request_id: Any, status: str, operation: str):
        self.request_id = str(request_id)
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} approval request {request_id} in status {status}"
        )


# =============================================================================
# Conflict
# =============================================================================


class DuplicateKeyError(ConflictError):
    """Unique-key violation reported by the store."""

    code: str = "DUPLICATE_KEY"

    def __init__(self, entity: str, detail: str):
        self.entity = entity
        self.detail = detail
        super().__init__(f"Duplicate {entity}: {detail}")


class VersionConflictError(ConflictError):
    code: str = "VERSION_CONFLICT"

    def __init__(self, entity: str, key: Any, expected: int, actual: int):
        self.entity = entity
        self.key = str(key)
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity} {key} was modified concurrently: "
            f"expected version {expected}, found {actual}"
        )


class WorkflowInUseError(ConflictError):
    code: str = "WORKFLOW_IN_USE"

    def __init__(self, workflow_id: Any, request_count: int, reason: str):
        self.workflow_id = str(workflow_id)
        self.request_count = request_count
        self.reason = reason
        super().__init__(
            f"Workflow {workflow_id} is referenced by {request_count} request(s): {reason}"
        )


# =============================================================================
# Forbidden
# =============================================================================


class NotAnApproverError(ForbiddenError):
    code: str = "NOT_AN_APPROVER"

    def __init__(self, request_id: Any, actor_id: Any, level_number: int | None):
        self.request_id = str(request_id)
        self.actor_id = str(actor_id)
        self.level_number = level_number
        super().__init__(
            f"Actor {actor_id} is not an approver at level {level_number} "
            f"of request {request_id}"
        )


class DelegationNotAllowedError(ForbiddenError):
    code: str = "DELEGATION_NOT_ALLOWED"

    def __init__(self, workflow_code: str):
        self.workflow_code = workflow_code
        super().__init__(f"Workflow {workflow_code!r} does not allow delegation")


class CancellationNotPermittedError(ForbiddenError):
    code: str = "CANCELLATION_NOT_PERMITTED"

    def __init__(self, request_id: Any, actor_id: Any):
        self.request_id = str(request_id)
        self.actor_id = str(actor_id)
        super().__init__(
            f"Actor {actor_id} may not cancel approval request {request_id}"
        )


# =============================================================================
# NotFound / Internal specializations used by the job runner
# =============================================================================


class HandlerNotRegisteredError(NotFoundError):
    code: str = "HANDLER_NOT_REGISTERED"

    def __init__(self, handler: str):
        self.handler = handler
        super().__init__("JobHandler", handler)


class HandlerTimeoutError(InternalError):
    code: str = "HANDLER_TIMEOUT"

    def __init__(self, handler: str, timeout_seconds: int):
        self.handler = handler
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Handler {handler!r} exceeded {timeout_seconds}s timeout")
