"""
AuditorService -- append-only, hash-chained audit trail.

Responsibility:
    Records who did what to which resource, with before/after snapshots,
    as immutable AuditEntry rows linked by a SHA-256 hash chain.  Provides
    chain verification and per-resource trace queries.

Architecture position:
    Kernel > Services.  ``AuditorService`` writes inside a caller-owned
    session.  ``AuditRecorder`` wraps it for the workflow engine: one
    independent transaction per entry, called after the primary transaction
    has committed, never raising.

Invariants enforced:
    - Sequence numbers come from SequenceService (locked counter row).
      The counter lock also serializes chain extension, so two writers
      can never link to the same predecessor.
    - hash = H(resource_type | resource_code | action | payload_hash | prev_hash).
    - Append-only (ORM listeners on AuditEntry).

Failure modes:
    - AuditChainBrokenError from verify_chain() on any mismatch.
    - AuditRecorder.record() logs ``audit_write_failed`` and returns None
      when the write fails; the audited operation has already committed and
      is NOT rolled back.  Audit is therefore non-transactional with the
      main write.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.dtos import Actor
from backoffice_kernel.exceptions import AuditChainBrokenError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_entry import AuditEntry
from backoffice_kernel.services.sequence_service import SequenceService
from backoffice_kernel.utils.hashing import hash_audit_entry, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_code: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    notes: str | None
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit entries for one resource, oldest first."""

    resource_type: str
    resource_code: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)


def _content_hash(actor_code: str, before: Any, after: Any, notes: str | None) -> str:
    return hash_payload({"actor_code": actor_code, "before": before, "after": after, "notes": notes})


def _link(entry_fields: Mapping[str, Any], payload_hash: str, prev_hash: str | None) -> str:
    return hash_audit_entry(
        entry_fields["resource_type"],
        entry_fields["resource_code"],
        entry_fields["action"],
        payload_hash,
        prev_hash,
    )


class AuditorService:
    """
    Appends and checks audit entries inside the caller's session.

    Never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _entries(self, *criteria) -> list[AuditEntry]:
        return list(self._session.scalars(select(AuditEntry).where(*criteria).order_by(AuditEntry.seq)))

    def record(
        self,
        actor: Actor,
        action: str,
        resource_type: str,
        resource_code: str,
        resource_name: str | None = None,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> AuditEntry:
        """Append one entry linked to the current chain head and flush it."""
        # Allocating seq locks the counter row, which also pins the chain head.
        seq = self._sequence_service.next_value(SequenceService.AUDIT_ENTRY)
        prev_hash = self._session.scalars(
            select(AuditEntry.hash).order_by(AuditEntry.seq.desc()).limit(1)
        ).first()

        fields = {
            "seq": seq,
            "action": action,
            "resource_type": resource_type,
            "resource_code": resource_code,
            "before": None if before is None else to_json_safe(dict(before)),
            "after": None if after is None else to_json_safe(dict(after)),
            "notes": notes,
        }
        payload_hash = _content_hash(actor.code, fields["before"], fields["after"], notes)
        entry = AuditEntry(
            **fields,
            actor_code=actor.code,
            actor_name=actor.name,
            resource_name=resource_name,
            occurred_at=self._clock.now(),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=_link(fields, payload_hash, prev_hash),
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={"resource_type": resource_type, "resource_code": resource_code, "action": action, "seq": seq},
        )
        return entry

    def verify_chain(self) -> bool:
        """
        Walk the whole trail in seq order, recomputing content hashes and links.

        Raises:
            AuditChainBrokenError: at the first entry that does not match.
        """
        entries = self._entries()
        prev_hash: str | None = None
        for entry in entries:
            if entry.prev_hash != prev_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(str(entry.id), prev_hash or "None", entry.prev_hash or "None")

            payload_hash = _content_hash(entry.actor_code, entry.before, entry.after, entry.notes)
            expected = _link(
                {"resource_type": entry.resource_type, "resource_code": entry.resource_code, "action": entry.action},
                payload_hash,
                prev_hash,
            )
            if payload_hash != entry.payload_hash or expected != entry.hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(str(entry.id), expected, entry.hash)
            prev_hash = entry.hash

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True

    def trace(self, resource_type: str, resource_code: str) -> AuditTrace:
        entries = self._entries(
            AuditEntry.resource_type == resource_type,
            AuditEntry.resource_code == resource_code,
        )
        return AuditTrace(
            resource_type,
            resource_code,
            tuple(
                AuditTraceEntry(e.seq, e.action, e.occurred_at, e.actor_code, e.before, e.after, e.notes, e.hash)
                for e in entries
            ),
        )


class AuditRecorder:
    """
    Best-effort audit writer used by the workflow engine after commit.

    Contract:
        ``record()`` opens its own transaction.  Any failure is logged as
        ``audit_write_failed`` and swallowed: the primary operation has
        already committed and must not fail because of its audit entry.
    """

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def record(
        self,
        actor: Actor,
        action: str,
        resource_type: str,
        resource_code: str,
        resource_name: str | None = None,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        notes: str | None = None,
    ) -> int | None:
        """Append an entry; returns its seq, or None if the write failed."""
        try:
            with session_scope(self._session_factory) as session:
                entry = AuditorService(session, self._clock).record(
                    actor, action, resource_type, resource_code,
                    resource_name=resource_name, before=before, after=after, notes=notes,
                )
                return entry.seq
        except Exception:  # noqa: BLE001
            logger.warning(
                "audit_write_failed",
                extra={
                    "resource_type": resource_type,
                    "resource_code": resource_code,
                    "action": action,
                },
                exc_info=True,
            )
            return None
