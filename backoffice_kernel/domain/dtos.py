"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    The immutable structures that cross the workflow engine boundary:
    Actor (who is acting), CreateResult / TransitionResult (write outcomes),
    DocumentView (read projection with child records), DocumentFilter,
    PageRequest, Pagination and DocumentPage (list queries).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Free of ORM dependencies; handlers
    build these from ORM rows at the service boundary.

Invariants enforced:
    - Actor.code is non-empty.
    - PageRequest.page >= 1 and PageRequest.size >= 1.
    - DocumentView.fields and children are read-only mappings.

Failure modes:
    - ValueError on an Actor with an empty code.
    - ValueError on a PageRequest with non-positive page or size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation."""
    code: str
    name: str

    def __post_init__(self) -> None:
        if not self.code:
            raise ValueError("Actor code must be non-empty")


@dataclass(frozen=True)
class CreateResult:
    """Outcome of create_document.

    ``created`` is False when an idempotency key matched an earlier call and
    the earlier document's code was returned instead.
    """
    document_type: str
    code: str
    status: str
    created: bool = True
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful apply_action.

    ``derived_fields`` holds the numeric and reference fields recomputed by
    the transition (e.g. used_amount / remaining_amount, settlement_code).
    ``warnings`` lists non-critical side effects that failed after commit.
    """
    document_type: str
    code: str
    action: str
    old_status: str
    new_status: str
    derived_fields: Mapping[str, Any] = field(default_factory=dict)
    version: int | None = None
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "derived_fields", _freeze(dict(self.derived_fields)))


@dataclass(frozen=True)
class DocumentView:
    """Read-only projection of a document including its child records."""
    document_type: str
    code: str
    status: str
    version: int
    fields: Mapping[str, Any]
    children: Mapping[str, tuple[Mapping[str, Any], ...]] = field(default_factory=dict)
    allowed_actions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _freeze(dict(self.fields)))
        object.__setattr__(
            self,
            "children",
            MappingProxyType(
                {name: tuple(_freeze(dict(r)) for r in rows) for name, rows in self.children.items()}
            ),
        )

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]


@dataclass(frozen=True)
class DocumentFilter:
    """Filter for list_documents."""
    status: str | None = None
    created_by: str | None = None
    search: str | None = None
    include_deleted: bool = False


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    size: int = 20

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        if self.size < 1:
            raise ValueError(f"page size must be >= 1, got {self.size}")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    def to_dict(self) -> dict[str, int]:
        return {
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "total_pages": self.total_pages,
        }


@dataclass(frozen=True)
class DocumentPage:
    """One page of a list query plus per-status counts over the whole filter."""
    items: tuple[DocumentView, ...]
    pagination: Pagination
    status_counts: Mapping[str, int] = field(default_factory=dict)
