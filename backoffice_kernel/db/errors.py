"""
Module: backoffice_kernel.db.errors
Responsibility: Translate SQLAlchemy / DBAPI failures into the back-office
    error taxonomy so callers only ever see BackofficeError kinds.
Architecture position: Kernel > DB.  Imports exceptions only.

Mapping:
    StaleDataError                       -> ConflictError
    IntegrityError                       -> ConflictError
    SQLSTATE 40P01 / 40001               -> ConflictError
    lock / statement timeout             -> OperationTimeoutError
        PostgreSQL SQLSTATE 55P03 (lock_not_available),
        57014 (query_canceled by statement_timeout),
        SQLite "database is locked" / "database table is locked"
    other OperationalError / DBAPIError  -> DependencyUnavailableError
    any other non-BackofficeError        -> InternalError
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from backoffice_kernel.exceptions import (
    BackofficeError,
    ConflictError,
    DependencyUnavailableError,
    InternalError,
    OperationTimeoutError,
)
from backoffice_kernel.logging_config import get_logger

logger = get_logger("db.errors")

_TIMEOUT_SQLSTATES = frozenset({"55P03", "57014"})
# deadlock_detected, serialization_failure
_CONFLICT_SQLSTATES = frozenset({"40P01", "40001"})
_SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_timeout(exc: DBAPIError) -> bool:
    if _sqlstate(exc) in _TIMEOUT_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return any(m in message for m in _SQLITE_LOCK_MESSAGES)


def translate_store_error(
    exc: Exception,
    document_type: str,
    document_code: str,
    operation: str,
) -> BackofficeError:
    """Map a store exception to its BackofficeError equivalent."""
    if isinstance(exc, BackofficeError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConflictError(document_type, document_code)
    if isinstance(exc, IntegrityError):
        return ConflictError(
            document_type, document_code, reason="uniqueness constraint violated"
        )
    if isinstance(exc, DBAPIError) and _sqlstate(exc) in _CONFLICT_SQLSTATES:
        return ConflictError(document_type, document_code, reason="concurrent update aborted")
    if isinstance(exc, DBAPIError) and is_timeout(exc):
        return OperationTimeoutError(operation, str(exc.orig))
    if isinstance(exc, (OperationalError, DBAPIError)):
        return DependencyUnavailableError("store", str(exc.orig))
    return InternalError(f"Unexpected error during {operation}: {exc!r}")


@contextmanager
def store_errors(document_type: str, document_code: str, operation: str) -> Iterator[None]:
    """Re-raise anything escaping the block as a BackofficeError.

    The original exception is chained as ``__cause__``.
    """
    try:
        yield
    except BackofficeError:
        raise
    except Exception as exc:
        translated = translate_store_error(exc, document_type, document_code, operation)
        log = logger.warning if isinstance(translated, ConflictError) else logger.error
        log(
            "store_error_translated",
            extra={
                "operation": operation,
                "error_kind": translated.kind,
                "error_code": translated.code,
                "source_exc": type(exc).__name__,
            },
        )
        raise translated from exc
