"""
Cash Advance ORM Models (``backoffice_modules.cash_advance.orm``).

Responsibility
--------------
Persistence for cash advances, the expense transactions recorded against
them, and the settlement documents that close them out.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.
MUST NOT be imported by ``backoffice_kernel``.

Invariants enforced
-------------------
* ``total_amount == used_amount + remaining_amount`` with both parts
  non-negative.  Non-negativity is a CHECK constraint; the sum is kept by
  the handler, which is the only writer of the three columns.
* ``used_amount`` equals the sum of the advance's non-deleted transactions.
* A settlement snapshots the advance's balances at the time of ``settle``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, WorkflowDocument


# ---------------------------------------------------------------------------
# CashAdvanceModel
# ---------------------------------------------------------------------------


class CashAdvanceModel(WorkflowDocument):
    """
    Money handed to an employee ahead of spending it.

    Guarantees:
        - code is unique (``CA-YYYY-NNNN``).
        - used_amount and remaining_amount are never negative.
    """

    __tablename__ = "cash_advances"

    document_type = "cash_advance"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_cash_advance_total_positive"),
        CheckConstraint("used_amount >= 0", name="ck_cash_advance_used_non_negative"),
        CheckConstraint("remaining_amount >= 0", name="ck_cash_advance_remaining_non_negative"),
        Index("idx_cash_advance_created_by", "created_by"),
    )

    employee_name: Mapped[str] = mapped_column(String(150), nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    request_date: Mapped[date]
    project_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_amount: Mapped[Decimal]
    used_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    remaining_amount: Mapped[Decimal]

    submitted_at: Mapped[datetime | None]
    approved_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approved_at: Mapped[datetime | None]
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    settled_at: Mapped[datetime | None]

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    transactions: Mapped[list["CashAdvanceTransactionModel"]] = relationship(
        "CashAdvanceTransactionModel",
        back_populates="cash_advance",
        order_by="CashAdvanceTransactionModel.code",
    )
    settlements: Mapped[list["SettlementModel"]] = relationship(
        "SettlementModel",
        back_populates="cash_advance",
        order_by="SettlementModel.code",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<CashAdvanceModel {self.code} [{self.status}]>"


# ---------------------------------------------------------------------------
# CashAdvanceTransactionModel
# ---------------------------------------------------------------------------


class CashAdvanceTransactionModel(TrackedBase):
    """
    One expense recorded against a cash advance.

    Not a workflow document: rows are written by the ``record_transaction``
    action and only ever flagged deleted together with their advance.
    """

    __tablename__ = "cash_advance_transactions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ca_transaction_amount_positive"),
        Index("idx_ca_transaction_advance", "cash_advance_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    cash_advance_id: Mapped[UUID] = mapped_column(
        ForeignKey("cash_advances.id"), nullable=False,
    )
    ca_code: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_date: Mapped[date]
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal]
    receipt_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    cash_advance: Mapped["CashAdvanceModel"] = relationship(
        "CashAdvanceModel",
        back_populates="transactions",
    )

    def __repr__(self) -> str:
        return f"<CashAdvanceTransactionModel {self.code} {self.amount}>"


# ---------------------------------------------------------------------------
# SettlementModel
# ---------------------------------------------------------------------------


class SettlementModel(WorkflowDocument):
    """
    Settlement request for a cash advance.

    Created by the advance's ``settle`` action with status ``submitted``;
    resolved by ``approve`` / ``reject`` (or the advance's
    ``settlement_approve`` / ``settlement_reject``).
    """

    __tablename__ = "cash_advance_settlements"

    document_type = "settlement"

    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ck_settlement_remaining_non_negative"),
        Index("idx_settlement_advance", "cash_advance_id"),
    )

    cash_advance_id: Mapped[UUID] = mapped_column(
        ForeignKey("cash_advances.id"), nullable=False,
    )
    ca_code: Mapped[str] = mapped_column(String(50), nullable=False)
    settlement_date: Mapped[date]
    total_ca_amount: Mapped[Decimal]
    total_used_amount: Mapped[Decimal]
    remaining_amount: Mapped[Decimal]
    # Status the advance was in when settle was requested
    ca_status_at_settle: Mapped[str] = mapped_column(String(30), nullable=False)
    refund_proof_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approved_at: Mapped[datetime | None]
    rejected_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    cash_advance: Mapped["CashAdvanceModel"] = relationship(
        "CashAdvanceModel",
        back_populates="settlements",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<SettlementModel {self.code} for {self.ca_code} [{self.status}]>"
