"""Services for the back-office kernel (write side)."""

from backoffice_kernel.services.auditor_service import AuditorService, AuditRecorder
from backoffice_kernel.services.code_generator import CodeGenerator
from backoffice_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AuditorService",
    "AuditRecorder",
    "CodeGenerator",
    "SequenceCounter",
    "SequenceService",
]
