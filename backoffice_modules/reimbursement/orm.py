"""
Reimbursement ORM Models (``backoffice_modules.reimbursement.orm``).

Responsibility
--------------
Persistence for employee reimbursement claims and their expense items.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.

Invariants enforced
-------------------
* ``total_amount`` equals the sum of the claim's non-deleted items; it is
  computed at creation and items are never edited afterwards.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, WorkflowDocument


class ReimbursementModel(WorkflowDocument):
    """
    A reimbursement claim.

    Guarantees:
        - code is unique (``REIM-YYYY-NNNN``).
        - approved claims carry the paying bank account code.
    """

    __tablename__ = "reimbursements"

    document_type = "reimbursement"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_reimbursement_total_positive"),
        Index("idx_reimbursement_created_by", "created_by"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    submitted_by_user_name: Mapped[str] = mapped_column(String(150), nullable=False)
    category_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    project_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal]

    bank_account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_proof_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approved_at: Mapped[datetime | None]
    rejected_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["ReimbursementItemModel"]] = relationship(
        "ReimbursementItemModel",
        back_populates="reimbursement",
        order_by="ReimbursementItemModel.code",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ReimbursementModel {self.code} [{self.status}]>"


class ReimbursementItemModel(TrackedBase):
    """One expense line on a reimbursement claim."""

    __tablename__ = "reimbursement_items"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_reimbursement_item_amount_positive"),
        Index("idx_reimbursement_item_parent", "reimbursement_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    reimbursement_id: Mapped[UUID] = mapped_column(
        ForeignKey("reimbursements.id"), nullable=False,
    )
    item_date: Mapped[date]
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal]
    attachment_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reimbursement: Mapped["ReimbursementModel"] = relationship(
        "ReimbursementModel",
        back_populates="items",
    )

    def __repr__(self) -> str:
        return f"<ReimbursementItemModel {self.code} {self.amount}>"
