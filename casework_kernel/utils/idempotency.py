"""
Idempotency key helpers.

A ledger transaction may carry an idempotency key, unique per project.  A
retry with the same key and the same content returns the original
transaction; the same key with different content is rejected.  Content is
compared through ``transaction_content_hash``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from casework_kernel.utils.hashing import hash_payload


def generate_idempotency_key(
    producer: str,
    event_type: str,
    event_id: UUID | str,
) -> str:
    """
    Build a key of the form ``producer:event_type:event_id``.

    Example:
        >>> generate_idempotency_key("payments", "advance", case_id)
        "payments:advance:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{producer}:{event_type}:{event_id}"


def transaction_content_hash(
    *,
    type: str,
    category: str,
    amount: Decimal,
    description: str,
    date: datetime | None,
) -> str:
    """Hash of the caller-supplied fields of a transaction."""
    return hash_payload(
        {
            "type": type,
            "category": category,
            "amount": amount,
            "description": description,
            "date": date,
        }
    )
