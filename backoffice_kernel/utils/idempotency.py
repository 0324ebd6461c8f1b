"""
Idempotency key utilities.

Client-supplied keys are scoped per actor so two users cannot collide on the
same key by accident.
"""


def scope_idempotency_key(actor_code: str, client_key: str) -> str:
    """
    Format: actor_code:client_key

    Raises:
        ValueError: If the client key is empty.

    Example:
        >>> scope_idempotency_key("EMP001", "9b1f...")
        "EMP001:9b1f..."
    """
    if not client_key or not client_key.strip():
        raise ValueError("Idempotency key must be non-empty")
    return f"{actor_code}:{client_key.strip()}"


def parse_idempotency_key(key: str) -> tuple[str, str]:
    """
    Split a scoped key into (actor_code, client_key).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 1)
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1]
