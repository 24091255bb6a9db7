"""Reserve snapshots and fee-based APY estimation.

Snapshots are display-side analytics only; they never feed pricing or
settlement. APY is inferred from 24h reserve growth in token A: LP fees stay
in the reserves, so growth = volume * fee_rate.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog

from dexengine.amm.pool import AmmPool
from dexengine.constants import BPS_DENOMINATOR
from dexengine.errors import DexError, InsufficientLiquidity
from dexengine.models.records import Snapshot
from dexengine.pools.registry import PoolRegistry
from dexengine.storage.base import Store

logger = structlog.get_logger()

DAYS_PER_YEAR = 365
APY_LOOKBACK = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def bucket_start(at: datetime, interval: int) -> datetime:
    """Start of the `interval`-second bucket containing `at`."""
    seconds = int(at.timestamp())
    return datetime.fromtimestamp(seconds - seconds % interval, UTC)


@dataclass
class SnapshotReport:
    """Outcome of a `record_all` sweep."""

    recorded: int = 0
    existing: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


class SnapshotRecorder:
    def __init__(
        self,
        registry: PoolRegistry,
        store: Store,
        interval: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Snapshot interval must be positive, got {interval}")
        self.registry = registry
        self.store = store
        self.interval = interval
        self.clock = clock

    def _take(self, pool: AmmPool) -> Snapshot:
        with pool.lock:
            reserve_a, reserve_b = pool.reserve_a, pool.reserve_b
        if reserve_a <= 0 or reserve_b <= 0:
            raise InsufficientLiquidity(f"Pool {pool.pool_id} has no reserves")
        return Snapshot(
            pool_id=pool.pool_id,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            timestamp=bucket_start(self.clock(), self.interval),
        )

    def record_snapshot(self, pool_id: str) -> Snapshot | None:
        """Record the pool's current reserves in the current time bucket.

        Returns:
            The stored snapshot, or None if the bucket already had one.

        Raises:
            PoolNotFound: If the pool doesn't exist
            InsufficientLiquidity: If the pool has no reserves yet
        """
        snapshot = self._take(self.registry.by_id(pool_id))
        if not self.store.add_snapshot(snapshot):
            logger.debug("snapshot_exists", pool=pool_id, timestamp=snapshot.timestamp.isoformat())
            return None
        logger.info(
            "snapshot_recorded",
            pool=pool_id,
            reserve_a=snapshot.reserve_a,
            reserve_b=snapshot.reserve_b,
        )
        return snapshot

    def record_all(self) -> SnapshotReport:
        """Snapshot every pool that has reserves; one pool failing doesn't stop the sweep."""
        report = SnapshotReport()
        for pool in self.registry.all_pools():
            if not pool.has_liquidity:
                report.skipped += 1
                continue
            try:
                if self.record_snapshot(pool.pool_id) is None:
                    report.existing += 1
                else:
                    report.recorded += 1
            except DexError as e:
                report.failed += 1
                report.errors.append({"pool_id": pool.pool_id, "error": e.detail})
                logger.warning("snapshot_failed", pool=pool.pool_id, error=e.detail)
        logger.info(
            "snapshot_sweep_complete",
            recorded=report.recorded,
            existing=report.existing,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    def prune(self, days_to_keep: int = 30) -> int:
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted = self.store.delete_snapshots_before(cutoff)
        logger.info("snapshots_pruned", deleted=deleted, days_to_keep=days_to_keep)
        return deleted


# --- APY -------------------------------------------------------------------


class PriceOracle(Protocol):
    def price_usd(self, token: str) -> float | None: ...

    def decimals(self, token: str) -> int: ...


class StaticPriceOracle:
    """Fixed USD prices and decimals, for local mode and tests."""

    def __init__(
        self,
        prices: dict[str, float] | None = None,
        decimals: dict[str, int] | None = None,
        default_decimals: int = 18,
    ) -> None:
        self.prices = dict(prices or {})
        self._decimals = dict(decimals or {})
        self.default_decimals = default_decimals

    def price_usd(self, token: str) -> float | None:
        return self.prices.get(token)

    def decimals(self, token: str) -> int:
        return self._decimals.get(token, self.default_decimals)


@dataclass(frozen=True)
class ApyEstimate:
    apy: float
    volume_24h: float
    tvl_usd: float
    snapshot_at: datetime | None = None
    reason: str | None = None


class ApyEstimator:
    def __init__(
        self,
        registry: PoolRegistry,
        store: Store,
        oracle: PriceOracle | None = None,
        clock: Callable[[], datetime] = _utcnow,
        lookback: timedelta = APY_LOOKBACK,
    ) -> None:
        self.registry = registry
        self.store = store
        self.oracle = oracle or StaticPriceOracle()
        self.clock = clock
        self.lookback = lookback

    def _units(self, amount: int, token: str) -> float:
        return amount / 10 ** self.oracle.decimals(token)

    def _price_a(self, pool: AmmPool) -> float:
        # Without a price for token A, value everything in token A units
        price = self.oracle.price_usd(pool.token_a)
        return 1.0 if price is None else price

    def tvl_usd(self, pool: AmmPool, reserve_a: int, reserve_b: int) -> float:
        """Value of both reserves. Falls back to 2 * reserve_a when a price is missing."""
        price_a = self.oracle.price_usd(pool.token_a)
        price_b = self.oracle.price_usd(pool.token_b)
        if price_a is None or price_b is None:
            return 2 * self._units(reserve_a, pool.token_a) * self._price_a(pool)
        return (
            self._units(reserve_a, pool.token_a) * price_a
            + self._units(reserve_b, pool.token_b) * price_b
        )

    def estimate_apy(self, pool_id: str) -> ApyEstimate:
        """Annualized LP fee yield from the last 24h of reserve growth.

        Returns zero APY (never raises for missing history) when no snapshot
        at least 24h old exists or token A reserves did not grow.

        Raises:
            PoolNotFound: If the pool doesn't exist
        """
        pool = self.registry.by_id(pool_id)
        with pool.lock:
            reserve_a, reserve_b = pool.reserve_a, pool.reserve_b
        tvl = self.tvl_usd(pool, reserve_a, reserve_b)

        snapshot = self.store.latest_snapshot_at_or_before(pool_id, self.clock() - self.lookback)
        if snapshot is None:
            return ApyEstimate(apy=0.0, volume_24h=0.0, tvl_usd=round(tvl, 2), reason="no_history")

        growth = reserve_a - snapshot.reserve_a
        if growth <= 0:
            return ApyEstimate(
                apy=0.0,
                volume_24h=0.0,
                tvl_usd=round(tvl, 2),
                snapshot_at=snapshot.timestamp,
                reason="no_growth",
            )

        growth_usd = self._units(growth, pool.token_a) * self._price_a(pool)
        fee_rate = pool.fee_bps / BPS_DENOMINATOR
        volume = growth_usd / fee_rate if fee_rate > 0 else 0.0
        apy = growth_usd * DAYS_PER_YEAR / tvl * 100 if tvl > 0 else 0.0

        logger.debug("apy_estimated", pool=pool_id, apy=apy, volume_24h=volume, tvl_usd=tvl)
        return ApyEstimate(
            apy=round(apy, 2),
            volume_24h=round(volume, 2),
            tvl_usd=round(tvl, 2),
            snapshot_at=snapshot.timestamp,
        )


__all__ = [
    "bucket_start",
    "SnapshotReport",
    "SnapshotRecorder",
    "PriceOracle",
    "StaticPriceOracle",
    "ApyEstimate",
    "ApyEstimator",
]
