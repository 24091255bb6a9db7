"""Data models for pools, snapshots and two-phase transactions."""

from dexengine.models.records import PoolRecord, Snapshot
from dexengine.models.transaction import (
    PendingTransaction,
    TransactionState,
    TransactionType,
)
from dexengine.models.types import (
    Amount,
    canonical_pair,
    derive_pool_id,
    normalize_token,
    pair_key,
)

__all__ = [
    "PoolRecord",
    "Snapshot",
    "PendingTransaction",
    "TransactionState",
    "TransactionType",
    "Amount",
    "canonical_pair",
    "derive_pool_id",
    "normalize_token",
    "pair_key",
]
