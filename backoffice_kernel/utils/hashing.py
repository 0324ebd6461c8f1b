"""
Canonical JSON and SHA-256 helpers.

The audit chain and idempotent replay both compare hashes computed at
different times, so the same logical value must always serialize to the
same bytes: keys sorted, no whitespace, decimals normalized.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from functools import singledispatch
from typing import Any
from uuid import UUID


@singledispatch
def _to_primitive(obj: Any) -> Any:
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@_to_primitive.register
def _(obj: Decimal) -> str:
    # 1000000 and 1000000.00 are the same amount
    return format(obj.normalize(), "f")


@_to_primitive.register(date)
@_to_primitive.register(datetime)
def _(obj) -> str:
    return obj.isoformat()


@_to_primitive.register
def _(obj: UUID) -> str:
    return str(obj)


@_to_primitive.register
def _(obj: bytes) -> str:
    return obj.hex()


@_to_primitive.register
def _(obj: tuple) -> list:
    return list(obj)


@_to_primitive.register(set)
@_to_primitive.register(frozenset)
def _(obj) -> list:
    return sorted(obj)


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_to_primitive)


def to_json_safe(data: Any) -> Any:
    """Plain JSON types only, ready for a JSON column."""
    return None if data is None else json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    """64-character hex SHA-256 of the canonical JSON form."""
    return _sha256(canonicalize_json(payload))


def hash_audit_entry(
    resource_type: str,
    resource_code: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Link hash for one audit entry.

    The previous entry's hash is part of the input, so editing any entry
    breaks every link after it.  The first entry chains from ``GENESIS``.
    """
    return _sha256("|".join((resource_type, resource_code, action, payload_hash, prev_hash or "GENESIS")))
