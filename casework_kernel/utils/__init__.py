"""Utility functions for the casework kernel."""

from casework_kernel.utils.hashing import canonicalize_json, hash_payload, to_jsonable
from casework_kernel.utils.idempotency import (
    generate_idempotency_key,
    transaction_content_hash,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "to_jsonable",
    "generate_idempotency_key",
    "transaction_content_hash",
]
