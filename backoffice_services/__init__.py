"""
backoffice_services -- Package init and public API.

Responsibility:
    The stateful layer: the WorkflowEngine and its collaborators (document
    handler contract, guard executor, side-effect dispatcher, JWT identity
    provider, authenticated gateway).  This is the only layer that opens
    transactions around workflow documents.

Architecture position:
    Services -- orchestration over the kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        backoffice_modules/  -> backoffice_services/ (allowed)
        backoffice_services/ -> backoffice_kernel/   (allowed)
        backoffice_kernel/   -> backoffice_services/ (FORBIDDEN)
        backoffice_services/ -> backoffice_modules/  (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from backoffice_kernel.logging_config import get_logger

logger = get_logger("services")

from backoffice_services.gateway import BackofficeGateway
from backoffice_services.guards import GuardExecutor, default_guard_executor
from backoffice_services.handlers import (
    ActionOutcome,
    DocumentHandler,
    EngineOptions,
    HandlerContext,
    HandlerRegistry,
)
from backoffice_services.identity import JWTIdentityProvider, extract_bearer_token
from backoffice_services.side_effects import SideEffect, SideEffectDispatcher, SideEffectOutcome
from backoffice_services.workflow_engine import WorkflowEngine

__all__ = [
    "ActionOutcome",
    "BackofficeGateway",
    "DocumentHandler",
    "EngineOptions",
    "GuardExecutor",
    "HandlerContext",
    "HandlerRegistry",
    "JWTIdentityProvider",
    "SideEffect",
    "SideEffectDispatcher",
    "SideEffectOutcome",
    "WorkflowEngine",
    "default_guard_executor",
    "extract_bearer_token",
]
