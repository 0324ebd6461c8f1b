"""
backoffice_services.workflow_engine -- The document workflow engine.

Responsibility:
    The single write path for every workflow document.  Creates documents,
    applies actions through the static transition tables, soft-deletes,
    and serves read projections and paged lists.

Architecture position:
    Services layer.  Orchestrates kernel primitives (session scope, row
    locks, code generator, audit recorder, dispatch ledger) and the
    per-type ``DocumentHandler`` registered for each document type.

Invariants enforced:
    - Every read-then-write runs in one transaction with a row lock on the
      document (``SELECT ... FOR UPDATE``) and a version compare-and-swap
      on flush.  Concurrent transitions on one document linearize.
    - Validation (transition table, payload, guard) happens before any
      write.  Any later failure rolls back the whole transaction,
      including critical side effects.
    - A handler can only move a document to one of the destinations the
      table resolved for ``(status, action)``.
    - Non-critical side effects, audit entries and the workflow trace are
      produced after commit and never fail the operation.

Failure modes:
    - DocumentNotFoundError: absent or soft-deleted document.
    - UnknownDocumentTypeError: no handler registered.
    - InvalidTransitionError: ``(status, action)`` not in the table.
    - ValidationFailedError / GuardFailedError: payload or precondition.
    - ConflictError: expected_version mismatch, version CAS failure,
      uniqueness violation, idempotency key reused for another type.
    - OperationTimeoutError / DependencyUnavailableError: store failures
      (see backoffice_kernel.db.errors).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.db.errors import store_errors
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.dtos import (
    Actor,
    CreateResult,
    DocumentFilter,
    DocumentPage,
    DocumentView,
    PageRequest,
    Pagination,
    TransitionResult,
)
from backoffice_kernel.domain.workflow import allowed_actions, resolve_transition
from backoffice_kernel.exceptions import (
    BackofficeError,
    ConflictError,
    DocumentNotFoundError,
    GuardFailedError,
    IdempotencyConflictError,
    InternalError,
    InvalidTransitionError,
)
from backoffice_kernel.logging_config import LogContext, get_logger
from backoffice_kernel.models.audit_entry import AuditAction
from backoffice_kernel.models.idempotency_record import IdempotencyRecord
from backoffice_kernel.services.auditor_service import AuditorService, AuditRecorder, AuditTrace
from backoffice_kernel.services.code_generator import CodeGenerator
from backoffice_kernel.utils.idempotency import scope_idempotency_key
from backoffice_services.guards import GuardExecutor, default_guard_executor
from backoffice_services.handlers import (
    DocumentHandler,
    EngineOptions,
    HandlerContext,
    HandlerRegistry,
)
from backoffice_services.side_effects import SideEffectDispatcher, SideEffectOutcome

logger = get_logger("services.workflow_engine")

# Trace type and outcome codes for the workflow_transition log record
TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"


def _emit_workflow_trace(
    workflow_name: str,
    action: str,
    document_type: str,
    document_code: str,
    from_state: str | None,
    outcome: str,
    duration_ms: float,
    to_state: str | None = None,
    reason: str | None = None,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit one structured record per attempted transition."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "workflow": workflow_name,
        "action": action,
        "from_state": from_state,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    if reason is not None:
        record["reason"] = reason
    record.update(LogContext.get_all())
    record["document_type"] = document_type
    record["document_code"] = document_code
    logger.info("workflow_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink(record)


def _outcome_for(exc: BackofficeError) -> str:
    if isinstance(exc, GuardFailedError):
        return OUTCOME_GUARD_FAILED
    return exc.kind


class WorkflowEngine:
    """
    Create, transition, delete and read workflow documents.

    Contract:
        Each public method is one unit of work with its own transaction.
        Callers never see SQLAlchemy exceptions, only BackofficeError kinds.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: HandlerRegistry,
        dispatcher: SideEffectDispatcher | None = None,
        clock: Clock | None = None,
        audit_recorder: AuditRecorder | None = None,
        guard_executor: GuardExecutor | None = None,
        options: EngineOptions | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._dispatcher = dispatcher or SideEffectDispatcher()
        self._clock = clock or SystemClock()
        self._audit = audit_recorder or AuditRecorder(session_factory, self._clock)
        self._guards = guard_executor or default_guard_executor()
        self._options = options or EngineOptions()
        self._outcome_sink = outcome_sink

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def dispatcher(self) -> SideEffectDispatcher:
        return self._dispatcher

    @property
    def clock(self) -> Clock:
        return self._clock

    def _context(self, session: Session, actor: Actor) -> HandlerContext:
        return HandlerContext(
            session=session,
            actor=actor,
            clock=self._clock,
            codes=CodeGenerator(session, self._clock, self._options.code_width),
            options=self._options,
        )

    def _locked(self, handler: DocumentHandler, session: Session, code: str):
        document = handler.lock(session, code)
        if document is None:
            raise DocumentNotFoundError(handler.document_type, code)
        return document

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_document(
        self,
        document_type: str,
        payload: Mapping[str, Any],
        actor: Actor,
        idempotency_key: str | None = None,
    ) -> CreateResult:
        """
        Validate ``payload``, allocate a code and insert the document at the
        workflow's initial state.

        With ``idempotency_key``, a repeated call by the same actor returns
        the first document's code with ``created=False``.
        """
        handler = self._registry.get(document_type)
        scoped_key = (
            scope_idempotency_key(actor.code, idempotency_key) if idempotency_key else None
        )

        with LogContext.bind(actor_code=actor.code, document_type=document_type):
            with store_errors(document_type, "", "create_document"):
                with session_scope(self._session_factory) as session:
                    if scoped_key is not None:
                        replay = self._replay_create(session, handler, scoped_key, idempotency_key)
                        if replay is not None:
                            return replay

                    ctx = self._context(session, actor)
                    data = handler.parse_create(ctx, payload or {})
                    code = ctx.codes.generate(handler.code_prefix)
                    document = handler.build(ctx, code, data)
                    now = ctx.now
                    document.code = code
                    document.status = handler.workflow.initial_state
                    document.created_by = actor.code
                    document.created_by_name = actor.name
                    document.created_at = now
                    document.updated_at = now
                    session.add(document)
                    session.flush()

                    if scoped_key is not None:
                        session.add(
                            IdempotencyRecord(
                                idempotency_key=scoped_key,
                                document_type=document_type,
                                document_code=code,
                                actor_code=actor.code,
                                created_at=now,
                            )
                        )

                    effects = self._dispatcher.dispatch(
                        ctx, document_type, code, None, document.status, critical=True
                    )
                    session.flush()
                    status = document.status
                    after = handler.fields(document)
                    resource_name = handler.resource_name(document)

            logger.info(
                "document_created",
                extra={"document_code": code, "status": status},
            )
            deferred = self._dispatcher.dispatch_deferred(
                self._session_factory,
                lambda s: self._context(s, actor),
                document_type, code, None, status,
            )
            self._audit.record(
                actor, AuditAction.CREATE.value, document_type, code,
                resource_name=resource_name, after=after,
            )
            self._audit_effects(actor, [*effects, *deferred.outcomes])

        return CreateResult(
            document_type=document_type,
            code=code,
            status=status,
            created=True,
            warnings=deferred.warnings,
        )

    def _replay_create(
        self,
        session: Session,
        handler: DocumentHandler,
        scoped_key: str,
        client_key: str,
    ) -> CreateResult | None:
        record = session.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.idempotency_key == scoped_key)
        ).scalar_one_or_none()
        if record is None:
            return None
        if record.document_type != handler.document_type:
            raise IdempotencyConflictError(client_key, handler.document_type, record.document_type)
        status = session.execute(
            select(handler.model.status).where(handler.model.code == record.document_code)
        ).scalar_one()
        logger.info(
            "idempotent_create_replayed",
            extra={"document_code": record.document_code},
        )
        return CreateResult(
            document_type=handler.document_type,
            code=record.document_code,
            status=status,
            created=False,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_action(
        self,
        document_type: str,
        code: str,
        action: str,
        actor: Actor,
        payload: Mapping[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """
        Apply ``action`` to the document ``code``.

        Preconditions:
            ``(status, action)`` is in the document type's transition table,
            the payload is valid and the transition's guard passes.
        Postconditions:
            Status, derived fields, child rows and critical side effects are
            committed together; nothing is visible otherwise.
        """
        handler = self._registry.get(document_type)
        start = time.monotonic()
        old_status: str | None = None

        with LogContext.bind(
            actor_code=actor.code, document_type=document_type, document_code=code
        ):
            try:
                with store_errors(document_type, code, f"apply_action:{action}"):
                    with session_scope(self._session_factory) as session:
                        ctx = self._context(session, actor)
                        document = self._locked(handler, session, code)
                        if expected_version is not None and document.version != expected_version:
                            raise ConflictError(
                                document_type, code,
                                reason=f"expected version {expected_version}, found {document.version}",
                            )
                        old_status = document.status
                        decision = resolve_transition(handler.workflow, old_status, action)
                        data = handler.parse_action(ctx, document, action, payload or {})
                        self._guards.require(
                            decision.guard, handler.guard_context(ctx, document, data)
                        )

                        before = handler.fields(document)
                        outcome = handler.perform(ctx, document, decision, data)
                        if outcome.new_status not in decision.destinations:
                            raise InternalError(
                                f"{document_type}.{action} produced status "
                                f"{outcome.new_status!r}, allowed: {sorted(decision.destinations)}"
                            )
                        document.status = outcome.new_status
                        document.updated_by = actor.code
                        document.updated_at = ctx.now
                        session.flush()

                        effects = self._dispatcher.dispatch(
                            ctx, document_type, code, old_status, outcome.new_status,
                            critical=True,
                        )
                        session.flush()
                        new_status = document.status
                        version = document.version
                        after = handler.fields(document)
                        resource_name = handler.resource_name(document)
            except BackofficeError as exc:
                _emit_workflow_trace(
                    handler.workflow.name, action, document_type, code,
                    from_state=old_status,
                    outcome=_outcome_for(exc),
                    duration_ms=(time.monotonic() - start) * 1000,
                    reason=exc.message,
                    outcome_sink=self._outcome_sink,
                )
                raise

            deferred = self._dispatcher.dispatch_deferred(
                self._session_factory,
                lambda s: self._context(s, actor),
                document_type, code, old_status, new_status,
            )
            self._audit.record(
                actor, action, document_type, code,
                resource_name=resource_name, before=before, after=after,
                notes=data.get("reason") if isinstance(data.get("reason"), str) else None,
            )
            all_effects = [*effects, *deferred.outcomes]
            self._audit_effects(actor, all_effects)
            _emit_workflow_trace(
                handler.workflow.name, action, document_type, code,
                from_state=old_status,
                outcome=OUTCOME_SUCCESS,
                duration_ms=(time.monotonic() - start) * 1000,
                to_state=new_status,
                outcome_sink=self._outcome_sink,
            )

        derived = dict(outcome.derived_fields)
        if all_effects:
            derived["side_effects"] = [o.to_dict() for o in all_effects]
        return TransitionResult(
            document_type=document_type,
            code=code,
            action=action,
            old_status=old_status,
            new_status=new_status,
            derived_fields=derived,
            version=version,
            warnings=deferred.warnings,
        )

    def redispatch(
        self,
        document_type: str,
        code: str,
        old_status: str | None,
        new_status: str,
        actor: Actor,
    ) -> list[SideEffectOutcome]:
        """Re-run the side effects of a past transition.

        Effects already in the dispatch ledger are skipped, so this is safe
        to call for a retry after a partial failure.
        """
        self._registry.get(document_type)
        with LogContext.bind(
            actor_code=actor.code, document_type=document_type, document_code=code
        ):
            with store_errors(document_type, code, "redispatch"):
                with session_scope(self._session_factory) as session:
                    effects = self._dispatcher.dispatch(
                        self._context(session, actor),
                        document_type, code, old_status, new_status, critical=True,
                    )
            deferred = self._dispatcher.dispatch_deferred(
                self._session_factory,
                lambda s: self._context(s, actor),
                document_type, code, old_status, new_status,
            )
            outcomes = [*effects, *deferred.outcomes]
            self._audit_effects(actor, outcomes)
        return outcomes

    def _audit_effects(self, actor: Actor, outcomes: list[SideEffectOutcome]) -> None:
        for outcome in outcomes:
            if not outcome.dispatched:
                continue
            self._audit.record(
                actor, AuditAction.SIDE_EFFECT.value,
                outcome.document_type, outcome.document_code,
                after=outcome.result, notes=outcome.name,
            )

    # ------------------------------------------------------------------
    # Soft delete
    # ------------------------------------------------------------------

    def delete_document(self, document_type: str, code: str, actor: Actor) -> None:
        """Soft-delete a document from one of its workflow's deletable states."""
        handler = self._registry.get(document_type)
        with LogContext.bind(
            actor_code=actor.code, document_type=document_type, document_code=code
        ):
            with store_errors(document_type, code, "delete_document"):
                with session_scope(self._session_factory) as session:
                    ctx = self._context(session, actor)
                    document = self._locked(handler, session, code)
                    if document.status not in handler.workflow.deletable_states:
                        raise InvalidTransitionError(
                            document_type, document.status, "delete",
                            allowed_actions(handler.workflow, document.status),
                        )
                    before = handler.fields(document)
                    handler.soft_delete(ctx, document)
                    document.updated_by = actor.code
                    document.updated_at = ctx.now
                    session.flush()
                    resource_name = handler.resource_name(document)

            logger.info("document_deleted", extra={"status": before["status"]})
            self._audit.record(
                actor, AuditAction.DELETE.value, document_type, code,
                resource_name=resource_name, before=before,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_document(self, document_type: str, code: str) -> DocumentView:
        handler = self._registry.get(document_type)
        with store_errors(document_type, code, "get_document"):
            with session_scope(self._session_factory) as session:
                document = handler.find(session, code)
                if document is None:
                    raise DocumentNotFoundError(document_type, code)
                return handler.view(document)

    def list_documents(
        self,
        document_type: str,
        filter: DocumentFilter | None = None,
        page: PageRequest | None = None,
    ) -> DocumentPage:
        """
        One page of documents, newest first, plus counts per status.

        ``status_counts`` covers every status matching the rest of the
        filter, so a UI can render tab badges from one call.
        """
        handler = self._registry.get(document_type)
        filter = filter or DocumentFilter()
        page = page or PageRequest(size=self._options.page_size)
        size = min(page.size, self._options.max_page_size)
        model = handler.model

        conditions = []
        if not filter.include_deleted:
            conditions.append(model.is_deleted.is_(False))
        if filter.created_by:
            conditions.append(model.created_by == filter.created_by)
        if filter.search and filter.search.strip():
            term = f"%{filter.search.strip()}%"
            conditions.append(
                or_(*(getattr(model, column).ilike(term) for column in handler.search_columns))
            )

        with store_errors(document_type, "", "list_documents"):
            with session_scope(self._session_factory) as session:
                status_counts = {
                    status: count
                    for status, count in session.execute(
                        select(model.status, func.count())
                        .where(*conditions)
                        .group_by(model.status)
                    ).all()
                }
                if filter.status:
                    conditions.append(model.status == filter.status)
                total = session.execute(
                    select(func.count()).select_from(model).where(*conditions)
                ).scalar_one()
                rows = session.execute(
                    select(model)
                    .where(*conditions)
                    .order_by(model.created_at.desc(), model.code.desc())
                    .offset((page.page - 1) * size)
                    .limit(size)
                ).scalars().all()
                items = tuple(handler.view(row) for row in rows)

        return DocumentPage(
            items=items,
            pagination=Pagination(page=page.page, page_size=size, total=total),
            status_counts=status_counts,
        )

    def trace(self, document_type: str, code: str) -> AuditTrace:
        """Audit entries for one document, oldest first."""
        with store_errors(document_type, code, "trace"):
            with session_scope(self._session_factory) as session:
                return AuditorService(session, self._clock).trace(document_type, code)
