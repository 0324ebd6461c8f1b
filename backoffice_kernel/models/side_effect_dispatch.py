"""
Module: backoffice_kernel.models.side_effect_dispatch
Responsibility: Dispatch ledger that makes side effects idempotent.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE (document_type, document_code, side_effect_name): a side effect
      runs at most once per triggering document.  A retried dispatch finds
      the existing row and does nothing; two racing dispatches collide on the
      constraint and the loser's transaction rolls back.
    - Rows are append-only (db/immutability.py).
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base


class SideEffectDispatch(Base):
    """One executed side effect."""

    __tablename__ = "side_effect_dispatches"

    __table_args__ = (
        UniqueConstraint(
            "document_type", "document_code", "side_effect_name",
            name="uq_side_effect_dispatch",
        ),
    )

    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_code: Mapped[str] = mapped_column(String(50), nullable=False)
    side_effect_name: Mapped[str] = mapped_column(String(100), nullable=False)

    trigger_status: Mapped[str] = mapped_column(String(30), nullable=False)
    critical: Mapped[bool] = mapped_column(Boolean, nullable=False)

    # Codes of documents created or changed by the effect
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    dispatched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dispatched_by: Mapped[str] = mapped_column(String(50), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SideEffectDispatch {self.side_effect_name} "
            f"for {self.document_type}:{self.document_code}>"
        )
