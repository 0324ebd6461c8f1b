"""
CodeGenerator -- human-readable document codes from atomic counters.

Responsibility:
    Produces codes of the form ``{prefix}-{year}-{NNNN}`` (e.g.
    ``CA-2025-0007``) for documents and their child records.

Architecture position:
    Kernel > Services.  Built on SequenceService; called by document
    handlers inside the workflow engine's transaction.

Invariants enforced:
    - Uniqueness under concurrency: the sequence number comes from a locked
      counter row per ``(prefix, year)``, never from counting existing
      rows.  Codes are globally unique, so there is exactly one counter per
      code space.
    - The year is taken from the injected Clock, so counters restart each
      calendar year and tests are deterministic.
    - Sequences wider than ``width`` are rendered in full, never truncated.

Failure modes:
    - ValueError on an empty or malformed prefix.
    - Lock wait timeout propagated from SequenceService.
"""

import re

from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.services.sequence_service import SequenceService

logger = get_logger("services.code_generator")

_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*$")


def format_code(prefix: str, year: int, sequence: int, width: int = 4) -> str:
    return f"{prefix}-{year}-{sequence:0{width}d}"


def counter_name(prefix: str, year: int) -> str:
    return f"{prefix}-{year}"


class CodeGenerator:
    """
    Allocates document codes.

    Contract:
        ``generate()`` increments a counter inside the caller's transaction.
        Persisting the document that carries the code is the caller's job;
        if the caller rolls back, the number is returned to the counter.
    """

    def __init__(self, session: Session, clock: Clock | None = None, width: int = 4):
        self._sequences = SequenceService(session)
        self._clock = clock or SystemClock()
        self._width = width

    def generate(self, prefix: str) -> str:
        """Return the next code for ``prefix`` in the current year."""
        if not _PREFIX_RE.match(prefix):
            raise ValueError(f"Invalid code prefix: {prefix!r}")
        year = self._clock.year
        sequence = self._sequences.next_value(counter_name(prefix, year))
        code = format_code(prefix, year, sequence, self._width)
        logger.debug("code_generated", extra={"prefix": prefix, "code": code})
        return code
