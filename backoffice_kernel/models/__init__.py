"""Kernel-owned ORM models."""

from backoffice_kernel.models.audit_entry import AuditAction, AuditEntry
from backoffice_kernel.models.idempotency_record import IdempotencyRecord
from backoffice_kernel.models.side_effect_dispatch import SideEffectDispatch

__all__ = [
    "AuditAction",
    "AuditEntry",
    "IdempotencyRecord",
    "SideEffectDispatch",
]
