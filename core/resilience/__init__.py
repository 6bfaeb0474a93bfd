"""
Core Resilience: fault tolerance primitives.

Provides reliability patterns for externally triggered operations:
- IdempotencyStore: Apply each external event at most once
"""
from core.resilience.idempotency import (
    IdempotencyStatus,
    IdempotencyStore,
    ProcessedEvent,
    generate_idempotency_key,
)

__all__ = [
    "IdempotencyStatus",
    "IdempotencyStore",
    "ProcessedEvent",
    "generate_idempotency_key",
]
