"""Pool registry.

One pool per unordered token pair. Pools are indexed by their canonical pair
key and by their deterministic pool id, and persisted through the Store.
Pools already in the store are loaded when the registry is built.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime

import structlog

from dexengine.amm.constant_product import ConstantProductAMM
from dexengine.amm.pool import AmmPool
from dexengine.constants import DEFAULT_LP_FEE_BPS
from dexengine.errors import PairExists, PoolNotFound
from dexengine.models.types import canonical_pair, derive_pool_id, pair_key
from dexengine.storage.base import Store

logger = structlog.get_logger()


class PoolRegistry:
    """Registry of constant-product pools.

    `get_or_create` is idempotent under concurrent calls: lookup and insert
    happen under one registry lock, and the store's unique pair-key
    constraint backs that up across processes.
    """

    def __init__(
        self,
        store: Store,
        namespace: str = "dexengine",
        fee_bps: int = DEFAULT_LP_FEE_BPS,
        amm: ConstantProductAMM | None = None,
    ) -> None:
        """Initialize the registry and load persisted pools.

        Args:
            store: Persistence backend
            namespace: Mixed into deterministic pool ids
            fee_bps: LP fee for newly created pools
            amm: Pricing implementation handed to every pool
        """
        self.store = store
        self.namespace = namespace
        self.fee_bps = fee_bps
        self.amm = amm
        self._lock = threading.Lock()
        self._pools: dict[str, AmmPool] = {}
        self._by_pair: dict[str, str] = {}

        for record in store.load_pools():
            self._index(AmmPool.from_record(record, amm=amm))
        if self._pools:
            logger.info("pools_loaded", count=len(self._pools))

    def __len__(self) -> int:
        return len(self._pools)

    def _index(self, pool: AmmPool) -> None:
        self._pools[pool.pool_id] = pool
        self._by_pair[pool.pair_key] = pool.pool_id

    def predict_pool_id(self, token_a: str, token_b: str) -> str:
        """Pool id the pair will have, whether or not it exists yet."""
        return derive_pool_id(self.namespace, token_a, token_b)

    def _insert(self, token_a: str, token_b: str, fee_bps: int | None) -> AmmPool:
        token0, token1 = canonical_pair(token_a, token_b)
        pool = AmmPool(
            pool_id=self.predict_pool_id(token0, token1),
            token_a=token0,
            token_b=token1,
            fee_bps=self.fee_bps if fee_bps is None else fee_bps,
            created_at=datetime.now(UTC),
            amm=self.amm,
        )
        self.store.insert_pool(pool.to_record())
        self._index(pool)
        logger.info(
            "pool_created",
            pool=pool.pool_id,
            token_a=token0,
            token_b=token1,
            fee_bps=pool.fee_bps,
        )
        return pool

    def get_or_create(self, token_a: str, token_b: str) -> AmmPool:
        """Return the pool for a pair, creating an empty one if absent.

        Raises:
            InvalidToken, IdenticalTokens: If the pair is malformed
        """
        key = pair_key(token_a, token_b)
        with self._lock:
            pool_id = self._by_pair.get(key)
            if pool_id is not None:
                return self._pools[pool_id]
            try:
                return self._insert(token_a, token_b, None)
            except PairExists:
                # Created by another process sharing the store
                record = self.store.get_pool(self.predict_pool_id(token_a, token_b))
                if record is None:
                    raise
                pool = AmmPool.from_record(record, amm=self.amm)
                self._index(pool)
                return pool

    def create(self, token_a: str, token_b: str, fee_bps: int | None = None) -> AmmPool:
        """Explicitly create a pool.

        Raises:
            PairExists: If a pool already exists for the unordered pair
        """
        key = pair_key(token_a, token_b)
        with self._lock:
            if key in self._by_pair:
                raise PairExists(f"Pool already exists for {key}")
            return self._insert(token_a, token_b, fee_bps)

    def find(self, token_a: str, token_b: str) -> AmmPool | None:
        """Pool for a pair (order independent), or None."""
        pool_id = self._by_pair.get(pair_key(token_a, token_b))
        return self._pools.get(pool_id) if pool_id is not None else None

    def get(self, token_a: str, token_b: str) -> AmmPool:
        """Pool for a pair (order independent).

        Raises:
            PoolNotFound: If no pool exists for the pair
        """
        pool = self.find(token_a, token_b)
        if pool is None:
            raise PoolNotFound(f"No pool for {token_a}/{token_b}")
        return pool

    def by_id(self, pool_id: str) -> AmmPool:
        pool = self._pools.get(pool_id.lower() if pool_id.startswith("0x") else pool_id)
        if pool is None:
            raise PoolNotFound(f"Pool {pool_id} not found")
        return pool

    def all_pools(self) -> list[AmmPool]:
        return list(self._pools.values())

    def lock_for(self, pool_id: str) -> threading.RLock:
        """Per-pool mutex guarding read-reserves -> compute -> write-reserves."""
        return self.by_id(pool_id).lock

    def save(self, pool: AmmPool) -> None:
        """Persist a pool's current state."""
        self.store.update_pool(pool.to_record())

    def pause(self, pool_id: str) -> AmmPool:
        pool = self.by_id(pool_id)
        with pool.lock:
            pool.pause()
            self.save(pool)
        return pool

    def resume(self, pool_id: str) -> AmmPool:
        pool = self.by_id(pool_id)
        with pool.lock:
            pool.resume()
            self.save(pool)
        return pool


__all__ = ["PoolRegistry"]
