"""
Back-office Modules.

One sub-package per document family.  Each contains:
- ORM models (the documents and their child records)
- Workflows (transition tables with guards)
- Handlers (payload validation and per-action behaviour)
- Side effects, where a transition creates or changes other documents

Modules:
- cash_advance: cash advances, their transactions and settlements
- reimbursement: employee reimbursement claims
- purchasing: sales orders, purchase orders, delivery orders, AP invoices

Processing logic (transactions, locking, guards, dispatch, audit) lives in
``backoffice_services.WorkflowEngine``.
"""

from backoffice_modules import cash_advance, purchasing, reimbursement

__all__ = [
    "cash_advance",
    "purchasing",
    "reimbursement",
    "build_workflow_engine",
    "register_all_modules",
]


def register_all_modules(registry, dispatcher) -> None:
    """
    Register every module's handlers and side effects.

    Call this explicitly at startup or in test fixtures; nothing is
    registered at import time.
    """
    from backoffice_kernel.logging_config import get_logger

    logger = get_logger("modules")

    cash_advance.register(registry, dispatcher)
    reimbursement.register(registry, dispatcher)
    purchasing.register(registry, dispatcher)

    logger.info(
        "all_modules_registered",
        extra={"document_types": list(registry.document_types)},
    )


def build_workflow_engine(
    session_factory,
    config=None,
    clock=None,
    audit_recorder=None,
    outcome_sink=None,
):
    """
    Wire a WorkflowEngine with every module registered.

    Args:
        session_factory: sessionmaker bound to the store.
        config: BackofficeConfig supplying engine options; defaults apply
            when omitted.
        clock: Clock for timestamps, code years and due dates.
        audit_recorder: replaces the default post-commit AuditRecorder.
        outcome_sink: receives every workflow_transition trace record.
    """
    from backoffice_services import (
        EngineOptions,
        HandlerRegistry,
        SideEffectDispatcher,
        WorkflowEngine,
    )

    registry = HandlerRegistry()
    dispatcher = SideEffectDispatcher()
    register_all_modules(registry, dispatcher)
    return WorkflowEngine(
        session_factory,
        registry,
        dispatcher=dispatcher,
        clock=clock,
        audit_recorder=audit_recorder,
        options=EngineOptions.from_config(config) if config is not None else None,
        outcome_sink=outcome_sink,
    )


def bootstrap(config=None, clock=None, create_tables=False):
    """
    Process start-up: configuration, logging, store, engine and gateway.

    Reads ``get_active_config()`` when no config is given, configures the
    ``backoffice`` logger at the configured level, initializes the
    module-level SQLAlchemy engine, installs the immutability listeners
    and returns a ``BackofficeGateway`` over a fully wired engine.

    ``create_tables`` creates the schema; meant for development databases.
    """
    from backoffice_config import get_active_config
    from backoffice_kernel.db.engine import get_session_factory, init_engine_from_url
    from backoffice_kernel.db.immutability import register_immutability_listeners
    from backoffice_kernel.logging_config import configure_logging
    from backoffice_modules._orm_registry import create_all_tables
    from backoffice_services import BackofficeGateway, JWTIdentityProvider

    config = config or get_active_config()
    configure_logging(level=config.logging.level)
    engine = init_engine_from_url(config.database.url, **config.database.engine_kwargs())
    register_immutability_listeners()
    if create_tables:
        create_all_tables(engine)

    workflow_engine = build_workflow_engine(get_session_factory(), config=config, clock=clock)
    identity = JWTIdentityProvider.from_config(config, clock=clock)
    return BackofficeGateway(workflow_engine, identity)
