"""
Module: backoffice_kernel.models.idempotency_record
Responsibility: Maps a caller-supplied idempotency key to the document that
    the first create_document call with that key produced.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - idempotency_key is unique; a second create with the same key returns
      the recorded document code instead of inserting.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_code: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_code: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.idempotency_key} -> {self.document_code}>"
