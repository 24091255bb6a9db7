"""Persisted pool and snapshot rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class PoolRecord:
    """Row in the `pools` table."""

    pool_id: str
    token_a: str
    token_b: str
    pair_key: str
    fee_bps: int
    reserve_a: int = 0
    reserve_b: int = 0
    total_shares: int = 0
    active: bool = True
    created_at: datetime | None = None


@dataclass(frozen=True)
class Snapshot:
    """Reserve sample used for analytics only, never for pricing."""

    pool_id: str
    reserve_a: int
    reserve_b: int
    timestamp: datetime


__all__ = ["PoolRecord", "Snapshot"]
