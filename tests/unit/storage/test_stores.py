"""Tests for the storage backends (in-memory and SQLite)."""

from datetime import UTC, datetime, timedelta

import pytest

from dexengine.errors import PairExists
from dexengine.models.records import PoolRecord, Snapshot
from dexengine.models.transaction import (
    PendingTransaction,
    TransactionState,
    TransactionType,
)
from dexengine.models.types import pair_key
from dexengine.storage import MemoryStore, SqlStore, Store, open_store
from tests.helpers import ALICE, BOB, USDC, WETH

POOL = "0x" + "ab" * 20
T0 = datetime(2026, 1, 1, tzinfo=UTC)


def pool_record(pool_id: str = POOL, **changes) -> PoolRecord:
    values = {
        "pool_id": pool_id,
        "token_a": USDC,
        "token_b": WETH,
        "pair_key": pair_key(USDC, WETH),
        "fee_bps": 25,
        "reserve_a": 1_000_000,
        "reserve_b": 4_000_000,
        "total_shares": 2_000_000,
        "created_at": T0,
    }
    values.update(changes)
    return PoolRecord(**values)


def transaction(tx_id: str, created_at: datetime, **changes) -> PendingTransaction:
    values = {
        "id": tx_id,
        "type": TransactionType.SWAP,
        "user_address": ALICE,
        "pool_id": POOL,
        "params": {"kind": "exact_in", "amount": 10**30, "path": [USDC, WETH]},
        "state": TransactionState.PENDING_TX1,
        "created_at": created_at,
    }
    values.update(changes)
    return PendingTransaction(**values)


class TestOpenStore:
    def test_no_url_selects_memory(self):
        assert isinstance(open_store(None), MemoryStore)

    def test_sqlite_url(self):
        store = open_store("sqlite://")
        assert isinstance(store, SqlStore)
        store.engine.dispose()

    def test_both_backends_satisfy_protocol(self, store: Store):
        assert isinstance(store, Store)


class TestPools:
    def test_insert_and_load(self, store: Store):
        store.insert_pool(pool_record())
        assert store.get_pool(POOL) == pool_record()
        assert store.load_pools() == [pool_record()]

    def test_duplicate_pair_key_rejected(self, store: Store):
        store.insert_pool(pool_record())
        with pytest.raises(PairExists):
            store.insert_pool(pool_record(pool_id="0x" + "cd" * 20))
        assert len(store.load_pools()) == 1

    def test_update(self, store: Store):
        store.insert_pool(pool_record())
        store.update_pool(pool_record(reserve_a=7, active=False))
        updated = store.get_pool(POOL)
        assert updated.reserve_a == 7
        assert updated.active is False

    def test_uint256_amounts_round_trip(self, store: Store):
        big = 2**255 + 1
        store.insert_pool(pool_record(total_shares=big))
        assert store.get_pool(POOL).total_shares == big

    def test_missing_pool(self, store: Store):
        assert store.get_pool(POOL) is None


class TestUnitOfWork:
    """Writes inside a unit of work commit together or not at all."""

    def test_rollback_on_error(self, store: Store):
        store.insert_pool(pool_record())
        with pytest.raises(RuntimeError):
            with store.unit_of_work():
                store.update_pool(pool_record(reserve_a=1))
                store.set_position(POOL, ALICE, 500)
                raise RuntimeError("boom")

        assert store.get_pool(POOL).reserve_a == 1_000_000
        assert store.get_position(POOL, ALICE) == 0

    def test_commit(self, store: Store):
        store.insert_pool(pool_record())
        with store.unit_of_work():
            store.update_pool(pool_record(reserve_a=1))
            store.set_position(POOL, ALICE, 500)
        assert store.get_pool(POOL).reserve_a == 1
        assert store.get_position(POOL, ALICE) == 500

    def test_nested_units_roll_back_together(self, store: Store):
        store.insert_pool(pool_record())
        with pytest.raises(RuntimeError):
            with store.unit_of_work():
                with store.unit_of_work():
                    store.set_position(POOL, ALICE, 500)
                raise RuntimeError("outer failure")
        assert store.get_position(POOL, ALICE) == 0


class TestPositions:
    def test_set_get_and_delete(self, store: Store):
        store.insert_pool(pool_record())
        store.set_position(POOL, ALICE, 10)
        store.set_position(POOL, ALICE, 25)
        assert store.get_position(POOL, ALICE) == 25

        store.set_position(POOL, ALICE, 0)
        assert store.list_positions(POOL) == []

    def test_listing(self, store: Store):
        store.insert_pool(pool_record())
        store.set_position(POOL, BOB, 2)
        store.set_position(POOL, ALICE, 1)
        assert store.list_positions(POOL) == [(ALICE, 1), (BOB, 2)]
        assert store.list_provider_positions(BOB) == [(POOL, 2)]


class TestSnapshots:
    def test_one_snapshot_per_bucket(self, store: Store):
        snapshot = Snapshot(POOL, 1, 2, T0)
        assert store.add_snapshot(snapshot) is True
        assert store.add_snapshot(Snapshot(POOL, 9, 9, T0)) is False
        assert store.list_snapshots(POOL) == [snapshot]

    def test_latest_at_or_before(self, store: Store):
        for hours in (0, 1, 2):
            store.add_snapshot(Snapshot(POOL, hours, hours, T0 + timedelta(hours=hours)))

        latest = store.latest_snapshot_at_or_before(POOL, T0 + timedelta(hours=1, minutes=30))
        assert latest.timestamp == T0 + timedelta(hours=1)
        assert store.latest_snapshot_at_or_before(POOL, T0 + timedelta(hours=1)).reserve_a == 1
        assert store.latest_snapshot_at_or_before(POOL, T0 - timedelta(seconds=1)) is None

    def test_timestamps_stay_utc(self, store: Store):
        store.add_snapshot(Snapshot(POOL, 1, 1, T0))
        assert store.list_snapshots(POOL)[0].timestamp.tzinfo is not None

    def test_delete_before(self, store: Store):
        for days in (0, 10, 40):
            store.add_snapshot(Snapshot(POOL, 1, 1, T0 - timedelta(days=days)))
        assert store.delete_snapshots_before(T0 - timedelta(days=30)) == 1
        assert len(store.list_snapshots(POOL)) == 2


class TestTransactions:
    def test_insert_get_update(self, store: Store):
        tx = transaction("tx-1", T0)
        store.insert_transaction(tx)
        assert store.get_transaction("tx-1") == tx

        updated = tx.evolve(state=TransactionState.TX1_COMPLETE, tx1_hash="H1", tx1_completed_at=T0)
        store.update_transaction(updated)
        assert store.get_transaction("tx-1") == updated

    def test_params_keep_big_amounts(self, store: Store):
        store.insert_transaction(transaction("tx-1", T0))
        assert store.get_transaction("tx-1").params["amount"] == 10**30

    def test_list_by_state_newest_first(self, store: Store):
        for i in range(3):
            store.insert_transaction(transaction(f"tx-{i}", T0 + timedelta(minutes=i)))
        store.insert_transaction(
            transaction("done", T0, state=TransactionState.TX2_COMPLETE)
        )

        pending = store.list_transactions(TransactionState.PENDING_TX1)
        assert [tx.id for tx in pending] == ["tx-2", "tx-1", "tx-0"]

    def test_tx1_completed_filter_is_inclusive(self, store: Store):
        cutoff = T0 + timedelta(minutes=10)
        for tx_id, completed in (("old", T0), ("edge", cutoff), ("new", cutoff + timedelta(seconds=1))):
            store.insert_transaction(
                transaction(
                    tx_id,
                    T0,
                    state=TransactionState.TX1_COMPLETE,
                    tx1_completed_at=completed,
                )
            )

        stuck = store.list_transactions(TransactionState.TX1_COMPLETE, tx1_completed_by=cutoff)
        assert {tx.id for tx in stuck} == {"old", "edge"}

    def test_missing_transaction(self, store: Store):
        assert store.get_transaction("nope") is None
