"""
ID generation utilities.
"""

import hashlib
import uuid


def generate_id() -> str:
    """Generate a random entity identifier (UUID4 hex)."""
    return uuid.uuid4().hex


def generate_deterministic_id(*parts: str, prefix: str = "") -> str:
    """
    Derive a stable identifier from the given parts.

    Used where a platform event carries no id of its own, so that
    redelivery of the same event yields the same identifier.

    Args:
        *parts: Ordered components identifying the event
        prefix: Optional readable prefix

    Returns:
        Prefixed SHA-256 hex digest (first 32 chars)
    """
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:32]
    return f"{prefix}{digest}" if prefix else digest
