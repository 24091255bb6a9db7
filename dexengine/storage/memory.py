"""Process-local store used for local mode and tests."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

import structlog

from dexengine.errors import PairExists
from dexengine.models.records import PoolRecord, Snapshot
from dexengine.models.transaction import PendingTransaction, TransactionState

logger = structlog.get_logger()


class MemoryStore:
    """Dict-backed store.

    A unit of work holds the store lock and takes a shallow copy of every
    table on entry; on exception the copies are put back. Records are frozen
    dataclasses, so shallow copies are enough.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._pools: dict[str, PoolRecord] = {}
        self._pair_index: dict[str, str] = {}
        self._positions: dict[tuple[str, str], int] = {}
        self._snapshots: dict[tuple[str, datetime], Snapshot] = {}
        self._transactions: dict[str, PendingTransaction] = {}
        self._protocol_fees: dict[str, int] = {}

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            saved = (
                dict(self._pools),
                dict(self._pair_index),
                dict(self._positions),
                dict(self._snapshots),
                dict(self._transactions),
                dict(self._protocol_fees),
            )
            self._depth = 1
            try:
                yield
            except BaseException:
                (
                    self._pools,
                    self._pair_index,
                    self._positions,
                    self._snapshots,
                    self._transactions,
                    self._protocol_fees,
                ) = saved
                logger.debug("unit_of_work_rolled_back")
                raise
            finally:
                self._depth = 0

    # --- Pools ---------------------------------------------------------------

    def load_pools(self) -> list[PoolRecord]:
        with self._lock:
            return list(self._pools.values())

    def get_pool(self, pool_id: str) -> PoolRecord | None:
        with self._lock:
            return self._pools.get(pool_id)

    def insert_pool(self, record: PoolRecord) -> None:
        with self._lock:
            if record.pair_key in self._pair_index or record.pool_id in self._pools:
                raise PairExists(f"Pool already exists for {record.pair_key}")
            self._pools[record.pool_id] = record
            self._pair_index[record.pair_key] = record.pool_id

    def update_pool(self, record: PoolRecord) -> None:
        with self._lock:
            self._pools[record.pool_id] = record

    # --- Positions -----------------------------------------------------------

    def get_position(self, pool_id: str, provider: str) -> int:
        with self._lock:
            return self._positions.get((pool_id, provider), 0)

    def set_position(self, pool_id: str, provider: str, shares: int) -> None:
        with self._lock:
            if shares == 0:
                self._positions.pop((pool_id, provider), None)
            else:
                self._positions[(pool_id, provider)] = shares

    def list_positions(self, pool_id: str) -> list[tuple[str, int]]:
        with self._lock:
            return sorted(
                (provider, shares)
                for (pid, provider), shares in self._positions.items()
                if pid == pool_id
            )

    def list_provider_positions(self, provider: str) -> list[tuple[str, int]]:
        with self._lock:
            return sorted(
                (pid, shares)
                for (pid, owner), shares in self._positions.items()
                if owner == provider
            )

    # --- Snapshots -----------------------------------------------------------

    def add_snapshot(self, snapshot: Snapshot) -> bool:
        key = (snapshot.pool_id, snapshot.timestamp)
        with self._lock:
            if key in self._snapshots:
                return False
            self._snapshots[key] = snapshot
            return True

    def latest_snapshot_at_or_before(self, pool_id: str, at: datetime) -> Snapshot | None:
        candidates = [s for s in self.list_snapshots(pool_id) if s.timestamp <= at]
        return candidates[-1] if candidates else None

    def list_snapshots(self, pool_id: str) -> list[Snapshot]:
        with self._lock:
            return sorted(
                (s for s in self._snapshots.values() if s.pool_id == pool_id),
                key=lambda s: s.timestamp,
            )

    def delete_snapshots_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [key for key, s in self._snapshots.items() if s.timestamp < cutoff]
            for key in stale:
                del self._snapshots[key]
            return len(stale)

    # --- Protocol fees -------------------------------------------------------

    def add_protocol_fee(self, token: str, amount: int) -> None:
        with self._lock:
            self._protocol_fees[token] = self._protocol_fees.get(token, 0) + amount

    def protocol_fees(self) -> dict[str, int]:
        with self._lock:
            return dict(self._protocol_fees)

    # --- Pending transactions ------------------------------------------------

    def insert_transaction(self, tx: PendingTransaction) -> None:
        with self._lock:
            if tx.id in self._transactions:
                raise ValueError(f"Transaction {tx.id} already exists")
            self._transactions[tx.id] = tx

    def update_transaction(self, tx: PendingTransaction) -> None:
        with self._lock:
            self._transactions[tx.id] = tx

    def get_transaction(self, tx_id: str) -> PendingTransaction | None:
        with self._lock:
            return self._transactions.get(tx_id)

    def list_transactions(
        self,
        state: TransactionState,
        tx1_completed_by: datetime | None = None,
    ) -> list[PendingTransaction]:
        with self._lock:
            matches = [tx for tx in self._transactions.values() if tx.state == state]
        if tx1_completed_by is not None:
            matches = [
                tx
                for tx in matches
                if tx.tx1_completed_at is not None and tx.tx1_completed_at <= tx1_completed_by
            ]
        return sorted(matches, key=lambda tx: tx.created_at, reverse=True)


__all__ = ["MemoryStore"]
