"""
SequenceService -- gap-tolerant, collision-free counters.

Responsibility:
    Hands out the next integer for a named counter: one counter per code
    prefix and year (``CA-2025``, ``CATRX-2025``) plus ``audit_entry``.

Architecture position:
    Kernel > Services.  Used by CodeGenerator and AuditorService inside the
    caller's transaction.

Invariants enforced:
    - Values come from a locked counter row, never from counting existing
      documents, so concurrent transactions cannot read the same value.
    - The increment belongs to the caller's transaction: a rollback gives
      the value back and a commit publishes it.

Failure modes:
    - Lock wait timeout when another transaction holds the counter row
      past the configured lock timeout.
    - RuntimeError if the counter row vanishes between a lost insert race
      and the re-read; counters are never deleted outside test teardown.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from backoffice_kernel.db.base import Base
from backoffice_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value handed out for one named counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """Next-value allocation.  Never commits; the caller owns the transaction."""

    AUDIT_ENTRY = "audit_entry"

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.scalars(stmt).one_or_none()

    def _insert(self, name: str) -> bool:
        """Try to create the counter at 1.  False if a concurrent insert won."""
        savepoint = self._session.begin_nested()
        self._session.add(SequenceCounter(name=name, current_value=1))
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_insert_lost_race", extra={"sequence_name": name})
            return False
        savepoint.commit()
        return True

    def next_value(self, sequence_name: str) -> int:
        """Return a value greater than any committed for this name.

        The counter row stays locked until the caller's transaction ends.
        """
        counter = self._lock(sequence_name)
        if counter is None:
            if self._insert(sequence_name):
                value = 1
                logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
                return value
            counter = self._lock(sequence_name)
            if counter is None:
                raise RuntimeError(f"Sequence counter {sequence_name} missing after insert conflict")

        counter.current_value += 1
        self._session.flush()
        value = counter.current_value
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a counter never used."""
        stmt = select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        return self._session.scalars(stmt).one_or_none()
