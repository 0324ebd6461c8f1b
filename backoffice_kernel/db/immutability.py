"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Three kinds of rows must never be rewritten once they exist:

    Entity                  | Rule                              | Why
    ------------------------|-----------------------------------|-----------------------------
    AuditEntry              | no UPDATE, no DELETE, ever        | Audit trail is append-only
    SideEffectDispatch      | no UPDATE, no DELETE, ever        | Ledger is the idempotency proof
    WorkflowDocument        | no DELETE; ``code`` never changes | Soft delete only; codes are
                            |                                   | referenced by other documents

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError, which aborts the flush and the transaction.

===============================================================================
USAGE
===============================================================================

Called once at application startup (and by the test suite):

    from backoffice_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect

from backoffice_kernel.exceptions import ImmutabilityViolationError
from backoffice_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type, entity_id=entity_id, reason=reason
    )


def _check_append_only_update(mapper, connection, target):
    entity_type = type(target).__name__
    raise _blocked(
        entity_type, str(target.id), "UPDATE",
        f"{entity_type} rows are append-only and cannot be modified",
    )


def _check_append_only_delete(mapper, connection, target):
    entity_type = type(target).__name__
    raise _blocked(
        entity_type, str(target.id), "DELETE",
        f"{entity_type} rows are append-only and cannot be deleted",
    )


def _check_document_code_immutability(mapper, connection, target):
    """Block reassignment of a document code after insert."""
    hist = inspect(target).attrs.code.history
    if hist.deleted:
        raise _blocked(
            type(target).__name__, str(target.code), "UPDATE",
            f"Document code cannot change (was {hist.deleted[0]!r})",
        )


def _check_document_delete(mapper, connection, target):
    """Documents are soft-deleted only."""
    raise _blocked(
        type(target).__name__, str(target.code), "DELETE",
        "Documents are soft-deleted; hard deletion is never performed",
    )


def _listeners():
    from backoffice_kernel.db.base import WorkflowDocument
    from backoffice_kernel.models.audit_entry import AuditEntry
    from backoffice_kernel.models.side_effect_dispatch import SideEffectDispatch

    return (
        (AuditEntry, "before_update", _check_append_only_update, {}),
        (AuditEntry, "before_delete", _check_append_only_delete, {}),
        (SideEffectDispatch, "before_update", _check_append_only_update, {}),
        (SideEffectDispatch, "before_delete", _check_append_only_delete, {}),
        (WorkflowDocument, "before_update", _check_document_code_immutability, {"propagate": True}),
        (WorkflowDocument, "before_delete", _check_document_delete, {"propagate": True}),
    )


_registered = False


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call after all models are imported but before any database
    operations begin.  Safe to call more than once.
    """
    global _registered
    if _registered:
        return
    for target, event_name, fn, kwargs in _listeners():
        event.listen(target, event_name, fn, **kwargs)
    _registered = True
    logger.info("immutability_listeners_registered")


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    global _registered
    if not _registered:
        return
    for target, event_name, fn, _ in _listeners():
        event.remove(target, event_name, fn)
    _registered = False
