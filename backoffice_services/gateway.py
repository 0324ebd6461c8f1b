"""
backoffice_services.gateway -- Authenticated entry point.

Responsibility:
    Verifies the caller's bearer token, binds a correlation id and the
    actor code into LogContext, and delegates to the WorkflowEngine.  This
    is the surface a transport layer (HTTP, CLI, queue consumer) calls.

Architecture position:
    Services layer, outermost.  No transport types cross this boundary;
    errors surface as BackofficeError and map to HTTP status through
    ``backoffice_kernel.exceptions.http_status_for``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from backoffice_kernel.domain.dtos import (
    Actor,
    CreateResult,
    DocumentFilter,
    DocumentPage,
    DocumentView,
    PageRequest,
    TransitionResult,
)
from backoffice_kernel.logging_config import LogContext, get_logger
from backoffice_services.identity import JWTIdentityProvider, extract_bearer_token
from backoffice_services.workflow_engine import WorkflowEngine

logger = get_logger("services.gateway")


class BackofficeGateway:
    """Token-authenticated facade over the WorkflowEngine."""

    def __init__(self, engine: WorkflowEngine, identity: JWTIdentityProvider):
        self._engine = engine
        self._identity = identity

    def authenticate(self, token: str | None) -> Actor:
        return self._identity.verify(token)

    def authenticate_header(self, authorization: str | None) -> Actor:
        return self._identity.verify(extract_bearer_token(authorization))

    def _bind(self, actor: Actor | None = None, correlation_id: str | None = None):
        return LogContext.bind(
            correlation_id=correlation_id or str(uuid4()),
            actor_code=actor.code if actor else None,
        )

    def create_document(
        self,
        token: str,
        document_type: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> CreateResult:
        actor = self.authenticate(token)
        with self._bind(actor, correlation_id):
            return self._engine.create_document(
                document_type, payload, actor, idempotency_key=idempotency_key
            )

    def apply_action(
        self,
        token: str,
        document_type: str,
        code: str,
        action: str,
        payload: Mapping[str, Any] | None = None,
        expected_version: int | None = None,
        correlation_id: str | None = None,
    ) -> TransitionResult:
        actor = self.authenticate(token)
        with self._bind(actor, correlation_id):
            return self._engine.apply_action(
                document_type, code, action, actor,
                payload=payload, expected_version=expected_version,
            )

    def delete_document(
        self,
        token: str,
        document_type: str,
        code: str,
        correlation_id: str | None = None,
    ) -> None:
        actor = self.authenticate(token)
        with self._bind(actor, correlation_id):
            self._engine.delete_document(document_type, code, actor)

    def get_document(
        self,
        token: str,
        document_type: str,
        code: str,
        correlation_id: str | None = None,
    ) -> DocumentView:
        actor = self.authenticate(token)
        with self._bind(actor, correlation_id):
            return self._engine.get_document(document_type, code)

    def list_documents(
        self,
        token: str,
        document_type: str,
        filter: DocumentFilter | None = None,
        page: PageRequest | None = None,
        correlation_id: str | None = None,
    ) -> DocumentPage:
        actor = self.authenticate(token)
        with self._bind(actor, correlation_id):
            logger.debug("list_documents", extra={"document_type": document_type})
            return self._engine.list_documents(document_type, filter=filter, page=page)
