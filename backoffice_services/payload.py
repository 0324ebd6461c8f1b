"""
backoffice_services.payload -- Payload field parsing for document handlers.

Every helper either returns a normalized Python value or raises
``ValidationFailedError`` naming the field.  Handlers call these before any
write, so a malformed payload never reaches the store.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from backoffice_kernel.exceptions import ValidationFailedError

# Money columns are Numeric(38, 9); 19 integer digits keep sums exact in the
# default 28-digit decimal context.
AMOUNT_SCALE = 9
AMOUNT_INTEGER_DIGITS = 19
_AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_SCALE)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def require_text(payload: Mapping[str, Any], key: str, max_length: int | None = None) -> str:
    value = payload.get(key)
    if not _present(value):
        raise ValidationFailedError(f"{key} is required", field=key)
    if not isinstance(value, str):
        raise ValidationFailedError(f"{key} must be text", field=key)
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationFailedError(
            f"{key} must be at most {max_length} characters", field=key
        )
    return text


def optional_text(payload: Mapping[str, Any], key: str, max_length: int | None = None) -> str | None:
    if not _present(payload.get(key)):
        return None
    return require_text(payload, key, max_length)


def parse_decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationFailedError(f"{key} must be a number", field=key)
    if isinstance(value, float):
        value = str(value)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationFailedError(f"{key} must be a number", field=key) from None
    if not result.is_finite():
        raise ValidationFailedError(f"{key} must be a finite number", field=key)
    return result


def require_amount(payload: Mapping[str, Any], key: str, allow_zero: bool = False) -> Decimal:
    """A monetary amount: > 0, or >= 0 when ``allow_zero``.

    At most AMOUNT_INTEGER_DIGITS digits before the point and AMOUNT_SCALE
    after it; anything finer would be rounded away by the money columns.
    """
    value = payload.get(key)
    if not _present(value):
        raise ValidationFailedError(f"{key} is required", field=key)
    amount = parse_decimal(value, key)
    if amount < 0 or (amount == 0 and not allow_zero):
        bound = "zero or more" if allow_zero else "greater than zero"
        raise ValidationFailedError(f"{key} must be {bound}", field=key)
    if amount.adjusted() >= AMOUNT_INTEGER_DIGITS:
        raise ValidationFailedError(
            f"{key} must have at most {AMOUNT_INTEGER_DIGITS} digits before the decimal point",
            field=key,
        )
    if amount != amount.quantize(_AMOUNT_QUANTUM):
        raise ValidationFailedError(
            f"{key} must have at most {AMOUNT_SCALE} decimal places", field=key
        )
    return amount


def require_quantity(payload: Mapping[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not _present(value):
        raise ValidationFailedError(f"{key} is required", field=key)
    try:
        quantity = int(str(value).strip())
    except ValueError:
        raise ValidationFailedError(f"{key} must be a whole number", field=key) from None
    if quantity <= 0:
        raise ValidationFailedError(f"{key} must be greater than zero", field=key)
    return quantity


def parse_date(value: Any, key: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationFailedError(f"{key} must be an ISO date (YYYY-MM-DD)", field=key)


def require_date(payload: Mapping[str, Any], key: str) -> date:
    value = payload.get(key)
    if not _present(value):
        raise ValidationFailedError(f"{key} is required", field=key)
    return parse_date(value, key)


def optional_date(payload: Mapping[str, Any], key: str) -> date | None:
    value = payload.get(key)
    if not _present(value):
        return None
    return parse_date(value, key)


def require_not_future(value: date, today: date, key: str) -> date:
    if value > today:
        raise ValidationFailedError(f"{key} cannot be in the future", field=key)
    return value


def require_items(payload: Mapping[str, Any], key: str = "items") -> list[Mapping[str, Any]]:
    items = payload.get(key)
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)) or not items:
        raise ValidationFailedError(f"At least one entry in {key} is required", field=key)
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ValidationFailedError(f"{key}[{index}] must be an object", field=key)
    return list(items)
