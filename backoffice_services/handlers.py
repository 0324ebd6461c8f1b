"""
backoffice_services.handlers -- Document handler contract and registry.

Responsibility:
    A ``DocumentHandler`` knows one document type: its ORM model, its
    workflow table, its code prefix, how to validate a create payload, how
    to validate and apply each action, and how to project a row into a
    ``DocumentView``.  The workflow engine owns transactions, locking,
    guards, side effects and audit; handlers only touch the rows they are
    given inside the engine's session.

Architecture position:
    Services layer.  Concrete handlers live in ``backoffice_modules.*``
    and are registered into a ``HandlerRegistry`` at startup.

Invariants enforced:
    - ``parse_create`` / ``parse_action`` run before any write and raise
      ``ValidationFailedError`` on a malformed payload.
    - ``perform`` returns a status that the engine checks against the
      resolved destinations; a handler can never move a document outside
      its table.
    - ``lock`` never returns a soft-deleted row.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from backoffice_kernel.db.base import WorkflowDocument
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.domain.dtos import Actor, DocumentView
from backoffice_kernel.domain.workflow import TransitionDecision, Workflow, allowed_actions
from backoffice_kernel.exceptions import InternalError, UnknownDocumentTypeError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.services.code_generator import CodeGenerator

logger = get_logger("services.handlers")

# Columns never exposed in views.
_HIDDEN_COLUMNS = frozenset({"id"})


@dataclass(frozen=True)
class EngineOptions:
    """Tunables the engine and handlers read from configuration."""

    code_width: int = 4
    ap_due_days: int = 30
    page_size: int = 20
    max_page_size: int = 100

    @classmethod
    def from_config(cls, config) -> EngineOptions:
        return cls(
            code_width=config.codes.width,
            ap_due_days=config.workflow.ap_due_days,
            page_size=config.workflow.page_size,
            max_page_size=config.workflow.max_page_size,
        )


@dataclass
class HandlerContext:
    """Everything a handler may use while the engine's transaction is open."""

    session: Session
    actor: Actor
    clock: Clock
    codes: CodeGenerator
    options: EngineOptions = field(default_factory=EngineOptions)

    @property
    def now(self) -> datetime:
        return self.clock.now()

    @property
    def today(self) -> date:
        return self.clock.today()


@dataclass(frozen=True)
class ActionOutcome:
    """Result of ``DocumentHandler.perform``: the new status plus derived fields."""

    new_status: str
    derived_fields: Mapping[str, Any] = field(default_factory=dict)


def row_to_dict(row: Any, exclude: frozenset[str] = _HIDDEN_COLUMNS) -> dict[str, Any]:
    """Column values of an ORM row keyed by attribute name."""
    mapper = inspect(row).mapper
    return {
        attr.key: getattr(row, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in exclude and not attr.key.endswith("_id")
    }


class DocumentHandler(ABC):
    """Per-document-type behaviour plugged into the workflow engine.

    Subclasses set the class attributes and implement ``parse_create`` and
    ``build``.  Action-specific behaviour is picked up by naming convention:

        parse_<action>(ctx, document, payload) -> dict
        on_<action>(ctx, document, decision, data) -> ActionOutcome

    Actions without an ``on_`` method move to the single resolved
    destination.
    """

    document_type: ClassVar[str]
    model: ClassVar[type[WorkflowDocument]]
    workflow: ClassVar[Workflow]
    code_prefix: ClassVar[str]
    search_columns: ClassVar[tuple[str, ...]] = ("code",)
    name_field: ClassVar[str | None] = None

    # Lookup

    def lock(self, session: Session, code: str) -> WorkflowDocument | None:
        """Load a live document by code with a row lock."""
        return session.execute(
            select(self.model)
            .where(self.model.code == code, self.model.is_deleted.is_(False))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find(self, session: Session, code: str) -> WorkflowDocument | None:
        return session.execute(
            select(self.model).where(
                self.model.code == code, self.model.is_deleted.is_(False)
            )
        ).scalar_one_or_none()

    # Create

    @abstractmethod
    def parse_create(self, ctx: HandlerContext, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Validate a create payload; return normalized data."""

    @abstractmethod
    def build(self, ctx: HandlerContext, code: str, data: Mapping[str, Any]) -> WorkflowDocument:
        """Construct the document (and children) from normalized data.

        The engine sets status, version and actor metadata afterwards and
        adds the returned row to the session.
        """

    # Transitions

    def parse_action(
        self,
        ctx: HandlerContext,
        document: WorkflowDocument,
        action: str,
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        parser = getattr(self, f"parse_{action}", None)
        if parser is None:
            # actions without a parser take no input
            return {}
        return parser(ctx, document, payload)

    def guard_context(
        self,
        ctx: HandlerContext,
        document: WorkflowDocument,
        data: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Mapping handed to the guard executor.

        Parsed input overlays the stored fields, except ownership and state,
        which always come from the row.
        """
        context = self.fields(document)
        context.update(data)
        context["created_by"] = document.created_by
        context["status"] = document.status
        context["actor_code"] = ctx.actor.code
        return context

    def perform(
        self,
        ctx: HandlerContext,
        document: WorkflowDocument,
        decision: TransitionDecision,
        data: Mapping[str, Any],
    ) -> ActionOutcome:
        handler = getattr(self, f"on_{decision.action}", None)
        if handler is not None:
            return handler(ctx, document, decision, data)
        destination = decision.single_destination
        if destination is None:
            raise InternalError(
                f"{self.document_type}.{decision.action} has several destinations "
                "and no handler to choose between them"
            )
        return ActionOutcome(destination)

    @staticmethod
    def stamp(ctx: HandlerContext, document: WorkflowDocument, prefix: str) -> None:
        """Set ``<prefix>_by`` / ``<prefix>_at`` from the acting user and clock."""
        setattr(document, f"{prefix}_by", ctx.actor.code)
        setattr(document, f"{prefix}_at", ctx.now)

    # Soft delete

    def soft_delete(self, ctx: HandlerContext, document: WorkflowDocument) -> None:
        document.is_deleted = True
        document.deleted_at = ctx.now
        document.deleted_by = ctx.actor.code
        for child in self.deletable_children(document):
            child.is_deleted = True

    def deletable_children(self, document: WorkflowDocument) -> list[Any]:
        return []

    # Views

    def fields(self, document: WorkflowDocument) -> dict[str, Any]:
        return row_to_dict(document)

    def children(self, document: WorkflowDocument) -> dict[str, list[dict[str, Any]]]:
        return {}

    def resource_name(self, document: WorkflowDocument) -> str | None:
        if self.name_field is None:
            return None
        return getattr(document, self.name_field, None)

    def view(self, document: WorkflowDocument) -> DocumentView:
        return DocumentView(
            document_type=self.document_type,
            code=document.code,
            status=document.status,
            version=document.version,
            fields=self.fields(document),
            children=self.children(document),
            allowed_actions=(
                () if document.is_deleted
                else allowed_actions(self.workflow, document.status)
            ),
        )


class HandlerRegistry:
    """Maps document_type -> DocumentHandler."""

    def __init__(self) -> None:
        self._handlers: dict[str, DocumentHandler] = {}

    def register(self, handler: DocumentHandler) -> None:
        if handler.document_type in self._handlers:
            raise ValueError(f"Handler already registered for {handler.document_type}")
        self._handlers[handler.document_type] = handler
        logger.debug(
            "document_handler_registered",
            extra={
                "document_type": handler.document_type,
                "workflow": handler.workflow.name,
            },
        )

    def get(self, document_type: str) -> DocumentHandler:
        try:
            return self._handlers[document_type]
        except KeyError:
            raise UnknownDocumentTypeError(document_type) from None

    @property
    def document_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def __contains__(self, document_type: str) -> bool:
        return document_type in self._handlers
