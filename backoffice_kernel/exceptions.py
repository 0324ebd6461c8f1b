"""
Typed Exception Hierarchy for the Back-Office Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the gateway, batch jobs, tests) branch on the error's category and
never on its message.  Each exception carries a ``kind`` (one of eight
buckets shared by all document types, listed below), a ``code`` naming the
specific failure, and structured attributes such as document_type,
document_code, status and action.  ``to_dict()`` renders all three for a
transport layer:

    try:
        engine.apply_action("cash_advance", code, "approve", actor)
    except BackofficeError as e:
        respond(http_status_for(e), e.to_dict())

===============================================================================
ERROR KINDS
===============================================================================

    Kind                    | HTTP | Raised when
    ------------------------|------|--------------------------------------------
    unauthorized            | 401  | Token missing, malformed, expired
    not_found               | 404  | Document code or type does not resolve
    validation_failed       | 400  | Missing field, amount <= 0, guard failed
    invalid_transition      | 409  | Action not legal from the current status
    conflict                | 409  | Lost a concurrent race, version mismatch
    dependency_unavailable  | 500  | Store unreachable or failing
    timeout                 | 500  | Store lock/statement timeout exceeded
    internal                | 500  | Anything unexpected

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BackofficeError (base)
    |
    +-- UnauthorizedError
    |   +-- TokenExpiredError
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- UnknownDocumentTypeError
    |
    +-- ValidationFailedError
    |   +-- GuardFailedError
    |
    +-- InvalidTransitionError
    |
    +-- ConflictError
    |   +-- IdempotencyConflictError
    |
    +-- DependencyUnavailableError
    |
    +-- OperationTimeoutError
    |
    +-- InternalError
        +-- ImmutabilityViolationError
        +-- AuditChainBrokenError
        +-- ConfigurationError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. `kind` and `code` are CLASS attributes: they are static per exception type
   and readable without instantiation (e.g. for API documentation).

2. OperationTimeoutError is not named TimeoutError to avoid shadowing the
   builtin.

3. ImmutabilityViolationError is `internal`: an attempt to rewrite the audit
   trail is a programming error, never a user error.

===============================================================================
"""

from typing import Any


class BackofficeError(Exception):
    """
    Base exception for all back-office errors.

    All subclasses define `kind` (taxonomy bucket) and `code`
    (specific identifier) class attributes.
    """

    kind: str = "internal"
    code: str = "BACKOFFICE_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "code": self.code, "message": self.message}


# Authentication


class UnauthorizedError(BackofficeError):
    """Bearer token missing, malformed, wrongly signed or otherwise invalid."""

    kind: str = "unauthorized"
    code: str = "UNAUTHORIZED"

    def __init__(self, reason: str = "Unauthorized"):
        self.reason = reason
        super().__init__(reason)


class TokenExpiredError(UnauthorizedError):
    """Bearer token signature is valid but its expiry has passed."""

    code: str = "TOKEN_EXPIRED"

    def __init__(self):
        super().__init__("Token has expired")


# Lookup


class NotFoundError(BackofficeError):
    """A referenced record does not resolve."""

    kind: str = "not_found"
    code: str = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_code: str):
        self.resource_type = resource_type
        self.resource_code = resource_code
        super().__init__(f"{resource_type} not found: {resource_code}")


class DocumentNotFoundError(NotFoundError):
    """Document is absent or soft-deleted."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_code: str):
        self.document_type = document_type
        self.document_code = document_code
        super().__init__(document_type, document_code)


class UnknownDocumentTypeError(NotFoundError):
    """No handler is registered for the requested document type."""

    code: str = "UNKNOWN_DOCUMENT_TYPE"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__("document_type", document_type)


# Validation


class ValidationFailedError(BackofficeError):
    """Payload or precondition rejected before any write."""

    kind: str = "validation_failed"
    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class GuardFailedError(ValidationFailedError):
    """A transition guard evaluated false."""

    code: str = "GUARD_FAILED"

    def __init__(self, guard_name: str, description: str, detail: str | None = None):
        self.guard_name = guard_name
        self.description = description
        self.detail = detail
        message = f"Precondition failed: {description}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


# Workflow


class InvalidTransitionError(BackofficeError):
    """The (status, action) pair is absent from the transition table."""

    kind: str = "invalid_transition"
    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        document_type: str,
        current_status: str,
        action: str,
        allowed_actions: tuple[str, ...] = (),
    ):
        self.document_type = document_type
        self.current_status = current_status
        self.action = action
        self.allowed_actions = allowed_actions
        super().__init__(
            f"Action '{action}' is not allowed on {document_type} "
            f"in status '{current_status}'"
        )


# Concurrency


class ConflictError(BackofficeError):
    """A concurrent transition won the race; the caller may retry."""

    kind: str = "conflict"
    code: str = "CONFLICT"

    def __init__(self, document_type: str, document_code: str, reason: str | None = None):
        self.document_type = document_type
        self.document_code = document_code
        self.reason = reason
        message = (
            f"Conflict on {document_type} {document_code}: "
            "document was modified by another transaction"
        )
        if reason:
            message = f"Conflict on {document_type} {document_code}: {reason}"
        super().__init__(message)


class IdempotencyConflictError(ConflictError):
    """Idempotency key was already used for a different document type."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, document_type: str, existing_type: str):
        self.idempotency_key = idempotency_key
        self.existing_type = existing_type
        super().__init__(
            document_type,
            idempotency_key,
            reason=f"idempotency key already used for {existing_type}",
        )


# Infrastructure


class DependencyUnavailableError(BackofficeError):
    """Store or other collaborator failed."""

    kind: str = "dependency_unavailable"
    code: str = "DEPENDENCY_UNAVAILABLE"

    def __init__(self, dependency: str, detail: str):
        self.dependency = dependency
        self.detail = detail
        super().__init__(f"{dependency} unavailable: {detail}")


class OperationTimeoutError(BackofficeError):
    """Store operation exceeded its lock or statement timeout."""

    kind: str = "timeout"
    code: str = "OPERATION_TIMEOUT"

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        self.detail = detail
        message = f"Operation timed out: {operation}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InternalError(BackofficeError):
    """Unexpected failure."""

    kind: str = "internal"
    code: str = "INTERNAL_ERROR"


class ImmutabilityViolationError(InternalError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(InternalError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ConfigurationError(InternalError):
    """Configuration file is missing or malformed."""

    code: str = "CONFIGURATION_ERROR"


# ---------------------------------------------------------------------------
# Transport mapping
# ---------------------------------------------------------------------------

HTTP_STATUS_BY_KIND: dict[str, int] = {
    "unauthorized": 401,
    "not_found": 404,
    "validation_failed": 400,
    "invalid_transition": 409,
    "conflict": 409,
    "dependency_unavailable": 500,
    "timeout": 500,
    "internal": 500,
}


def http_status_for(error: BaseException) -> int:
    """HTTP status code for any exception; unknown exceptions map to 500."""
    kind = getattr(error, "kind", None)
    return HTTP_STATUS_BY_KIND.get(kind, 500) if isinstance(kind, str) else 500
