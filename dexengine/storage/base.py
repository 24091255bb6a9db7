"""Persistence interface shared by every storage backend.

The engine needs five collections (pools, lp_positions, pool_snapshots,
pending_transactions, protocol_fees) and one guarantee: writes issued inside
`unit_of_work()` commit together or not at all.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, runtime_checkable

from dexengine.models.records import PoolRecord, Snapshot
from dexengine.models.transaction import PendingTransaction, TransactionState


@runtime_checkable
class Store(Protocol):
    """Storage backend protocol.

    Reads and writes may be issued inside or outside a unit of work. Outside
    one, each write commits on its own.
    """

    def unit_of_work(self) -> AbstractContextManager[None]:
        """All-or-nothing scope for the writes issued inside it. Reentrant."""
        ...

    # Pools

    def load_pools(self) -> list[PoolRecord]: ...

    def get_pool(self, pool_id: str) -> PoolRecord | None: ...

    def insert_pool(self, record: PoolRecord) -> None:
        """Raises PairExists if the pair key or pool id is already taken."""
        ...

    def update_pool(self, record: PoolRecord) -> None: ...

    # Liquidity positions

    def get_position(self, pool_id: str, provider: str) -> int: ...

    def set_position(self, pool_id: str, provider: str, shares: int) -> None:
        """Store a share balance. A zero balance deletes the row."""
        ...

    def list_positions(self, pool_id: str) -> list[tuple[str, int]]: ...

    def list_provider_positions(self, provider: str) -> list[tuple[str, int]]: ...

    # Snapshots

    def add_snapshot(self, snapshot: Snapshot) -> bool:
        """Append a snapshot. Returns False if (pool_id, timestamp) exists."""
        ...

    def latest_snapshot_at_or_before(self, pool_id: str, at: datetime) -> Snapshot | None: ...

    def list_snapshots(self, pool_id: str) -> list[Snapshot]: ...

    def delete_snapshots_before(self, cutoff: datetime) -> int: ...

    # Protocol fees

    def add_protocol_fee(self, token: str, amount: int) -> None:
        """Add `amount` to the treasury's accrued fee in `token`."""
        ...

    def protocol_fees(self) -> dict[str, int]: ...

    # Pending transactions

    def insert_transaction(self, tx: PendingTransaction) -> None: ...

    def update_transaction(self, tx: PendingTransaction) -> None: ...

    def get_transaction(self, tx_id: str) -> PendingTransaction | None: ...

    def list_transactions(
        self,
        state: TransactionState,
        tx1_completed_by: datetime | None = None,
    ) -> list[PendingTransaction]:
        """Transactions in `state`, newest first.

        `tx1_completed_by` keeps only records whose TX1 completed at or before it.
        """
        ...


__all__ = ["Store"]
