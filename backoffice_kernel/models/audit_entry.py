"""
Module: backoffice_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only, hash-chained audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit entries are append-only; no UPDATE or DELETE (ORM listeners in
      db/immutability.py).
    - hash = H(resource_type | resource_code | action | payload_hash | prev_hash),
      validated by AuditorService.verify_chain().
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEntry IS the who-did-what-to-what log.  Every document creation,
    transition, side-effect-driven change and soft delete produces one entry,
    written after the primary transaction commits.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base


class AuditAction(str, Enum):
    """Kinds of audited operations.  Transitions record their workflow action."""

    CREATE = "create"
    TRANSITION = "transition"
    DELETE = "delete"
    SIDE_EFFECT = "side_effect"


class AuditEntry(Base):
    """
    One audit record.

    Contract:
        Rows are append-only.  ``before`` / ``after`` are JSON snapshots of
        the resource's fields around the change; ``action`` is the workflow
        action (``approve``, ``record_transaction`` ...) or an AuditAction.

    Guarantees:
        - seq is unique and monotonically increasing.
        - prev_hash is None only for the genesis entry.
    """

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_resource", "resource_type", "resource_code"),
        Index("idx_audit_actor", "actor_code"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    actor_code: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(150), nullable=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_code: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.seq} {self.action} on {self.resource_type}:{self.resource_code}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
