"""
backoffice_services.side_effects -- Side-effect dispatch keyed by transition.

Responsibility:
    Declarative lookup from ``(document_type, new_status)`` to the side
    effects a transition triggers, plus their execution.  Every execution is
    recorded in the ``side_effect_dispatches`` ledger keyed by
    ``(document_type, document_code, side_effect_name)``; a retried dispatch
    finds the ledger row and does nothing.

Architecture position:
    Services layer.  Called by the workflow engine; effect functions are
    declared in ``backoffice_modules.*.side_effects``.

Invariants enforced:
    - A side effect runs at most once per triggering document (ledger row
      plus unique constraint; a racing duplicate loses on flush).
    - Critical effects run inside the primary transaction: their failure
      rolls the transition back.
    - Non-critical effects run after commit, each in its own transaction;
      their failure is logged as ``side_effect_failed`` and returned as a
      warning.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.side_effect_dispatch import SideEffectDispatch
from backoffice_kernel.utils.hashing import to_json_safe
from backoffice_services.handlers import HandlerContext

logger = get_logger("services.side_effects")

SideEffectFn = Callable[[HandlerContext, str], Mapping[str, Any] | None]


@dataclass(frozen=True)
class SideEffect:
    """A dependent action fired when ``document_type`` enters ``trigger_status``."""

    name: str
    document_type: str
    trigger_status: str
    fn: SideEffectFn
    critical: bool = True
    description: str = ""


@dataclass(frozen=True)
class SideEffectOutcome:
    name: str
    document_type: str
    document_code: str
    critical: bool
    dispatched: bool
    result: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "critical": self.critical,
            "dispatched": self.dispatched,
            "result": dict(self.result) if self.result else None,
        }


@dataclass(frozen=True)
class DeferredDispatch:
    """Outcomes of post-commit effects plus warnings for the ones that failed."""

    outcomes: tuple[SideEffectOutcome, ...] = ()
    warnings: tuple[str, ...] = ()


class SideEffectDispatcher:
    """Registry and runner for side effects."""

    def __init__(self) -> None:
        self._effects: list[SideEffect] = []

    def register(self, effect: SideEffect) -> None:
        if any(
            e.name == effect.name and e.document_type == effect.document_type
            for e in self._effects
        ):
            raise ValueError(
                f"Side effect {effect.name} already registered for {effect.document_type}"
            )
        self._effects.append(effect)
        logger.debug(
            "side_effect_registered",
            extra={
                "side_effect": effect.name,
                "document_type": effect.document_type,
                "trigger_status": effect.trigger_status,
                "critical": effect.critical,
            },
        )

    def on_transition(
        self,
        document_type: str,
        old_status: str | None,
        new_status: str,
    ) -> list[SideEffect]:
        """Effects triggered by entering ``new_status``, in registration order."""
        if old_status == new_status:
            return []
        return [
            e for e in self._effects
            if e.document_type == document_type and e.trigger_status == new_status
        ]

    def _claimed(self, session: Session, effect: SideEffect, code: str) -> SideEffectDispatch | None:
        return session.execute(
            select(SideEffectDispatch).where(
                SideEffectDispatch.document_type == effect.document_type,
                SideEffectDispatch.document_code == code,
                SideEffectDispatch.side_effect_name == effect.name,
            )
        ).scalar_one_or_none()

    def run(self, ctx: HandlerContext, effect: SideEffect, code: str) -> SideEffectOutcome:
        """Run one effect in ``ctx.session`` unless the ledger already has it."""
        existing = self._claimed(ctx.session, effect, code)
        if existing is not None:
            logger.info(
                "side_effect_already_dispatched",
                extra={
                    "side_effect": effect.name,
                    "document_type": effect.document_type,
                    "document_code": code,
                },
            )
            return SideEffectOutcome(
                effect.name, effect.document_type, code, effect.critical,
                dispatched=False, result=existing.result,
            )

        result = effect.fn(ctx, code)
        result_data = to_json_safe(dict(result)) if result else None
        ctx.session.add(
            SideEffectDispatch(
                document_type=effect.document_type,
                document_code=code,
                side_effect_name=effect.name,
                trigger_status=effect.trigger_status,
                critical=effect.critical,
                result=result_data,
                dispatched_at=ctx.now,
                dispatched_by=ctx.actor.code,
            )
        )
        ctx.session.flush()
        logger.info(
            "side_effect_dispatched",
            extra={
                "side_effect": effect.name,
                "document_type": effect.document_type,
                "document_code": code,
                "critical": effect.critical,
                "result": result_data,
            },
        )
        return SideEffectOutcome(
            effect.name, effect.document_type, code, effect.critical,
            dispatched=True, result=result_data,
        )

    def dispatch(
        self,
        ctx: HandlerContext,
        document_type: str,
        code: str,
        old_status: str | None,
        new_status: str,
        critical: bool = True,
    ) -> list[SideEffectOutcome]:
        """Run the matching effects whose ``critical`` flag equals ``critical``.

        Exceptions propagate; the caller's transaction decides what rolls back.
        """
        return [
            self.run(ctx, effect, code)
            for effect in self.on_transition(document_type, old_status, new_status)
            if effect.critical == critical
        ]

    def dispatch_deferred(
        self,
        session_factory: sessionmaker[Session],
        make_context: Callable[[Session], HandlerContext],
        document_type: str,
        code: str,
        old_status: str | None,
        new_status: str,
    ) -> DeferredDispatch:
        """Run non-critical effects after commit, one transaction each."""
        outcomes: list[SideEffectOutcome] = []
        warnings: list[str] = []
        for effect in self.on_transition(document_type, old_status, new_status):
            if effect.critical:
                continue
            try:
                with session_scope(session_factory) as session:
                    outcomes.append(self.run(make_context(session), effect, code))
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "side_effect_failed",
                    extra={
                        "side_effect": effect.name,
                        "document_type": document_type,
                        "document_code": code,
                        "error": str(exc),
                    },
                    exc_info=True,
                )
                warnings.append(f"Side effect {effect.name} failed: {exc}")
        return DeferredDispatch(tuple(outcomes), tuple(warnings))
