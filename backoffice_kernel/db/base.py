"""
Module: backoffice_kernel.db.base
Responsibility: the declarative base every ORM model derives from, the
    column-type conventions it imposes, and the two abstract layers above
    it: TrackedBase (who and when) and WorkflowDocument (code, status,
    soft delete).
Architecture position: Kernel > DB.  Imported by every model file; imports
    nothing from models/, services/, domain/, or outer layers.

Invariants enforced:
    - Surrogate keys are uuid4 values kept in a 36-character string column,
      identical on SQLite and PostgreSQL.  Document codes are a separate
      unique column and never serve as foreign keys.
    - Money is Numeric(38, 9) through the annotation map (the Money type;
      exact decimal text on SQLite); no model declares a float amount.
    - created_by / updated_by hold actor codes as issued by the identity
      provider.
    - Concrete documents add a ``version`` column registered as the
      mapper's version_id_col.

Failure modes:
    - IntegrityError on duplicate document code.
    - StaleDataError on flush when the row's version changed underneath
      (translated to ConflictError by the workflow engine).
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

UUID = uuid.UUID


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, its canonical text form in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: Any, dialect) -> UUID | None:
        return None if value is None else uuid.UUID(value)


class Money(TypeDecorator):
    """
    ``Decimal`` in Python, Numeric(38, 9) in the database.

    SQLite has no exact decimal storage (NUMERIC columns hold floats), so
    there the value is kept as its plain decimal text.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(50))
        return dialect.type_descriptor(Numeric(38, 9))

    def process_bind_param(self, value: Any, dialect) -> Any:
        if value is None or dialect.name != "sqlite":
            return value
        return format(Decimal(value), "f")

    def process_result_value(self, value: Any, dialect) -> Decimal | None:
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(value)


class Base(DeclarativeBase):
    """Shared metadata, annotation-driven column types and the ``id`` key."""

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Money(),
        date: Date,
        datetime: DateTime(timezone=True),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid.uuid4)


class TrackedBase(Base):
    """
    Who created and last changed a row, and when.

    Services fill the timestamps from the injected Clock; the server
    defaults only cover rows inserted by hand.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by: Mapped[str] = mapped_column(String(50))
    updated_by: Mapped[str | None] = mapped_column(String(50))


class WorkflowDocument(TrackedBase):
    """
    Abstract base for every document governed by a workflow table.

    Contract:
        - ``code`` is assigned once, at creation, and never reassigned.
        - ``status`` changes only through the workflow engine.
        - Soft-deleted rows (``is_deleted``) are invisible to every read and
          transition.  Hard deletion is never performed.

    Concrete subclasses declare::

        version: Mapped[int] = mapped_column(Integer, nullable=False)
        __mapper_args__ = {"version_id_col": version}

    so SQLAlchemy adds ``WHERE version = :old`` to every UPDATE.
    """

    __abstract__ = True

    # Resource type written to the audit trail; set by concrete subclasses.
    document_type: ClassVar[str] = ""

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    created_by_name: Mapped[str | None] = mapped_column(String(150), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None]
    deleted_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
