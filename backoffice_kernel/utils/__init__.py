"""Utility modules for the back-office kernel."""

from backoffice_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_entry,
    hash_payload,
    to_json_safe,
)
from backoffice_kernel.utils.idempotency import scope_idempotency_key

__all__ = [
    "canonicalize_json",
    "hash_audit_entry",
    "hash_payload",
    "to_json_safe",
    "scope_idempotency_key",
]
