"""Engine composition.

Every component receives its collaborators through its constructor;
`build_engine` is the single place that wires them together. The process
entrypoint (API lifespan or CLI command) owns the result.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from dexengine.analytics.snapshots import ApyEstimator, PriceOracle, SnapshotRecorder
from dexengine.config import DEFAULT_CONFIG, EngineConfig
from dexengine.ledger.positions import LiquidityLedger
from dexengine.pools.registry import PoolRegistry
from dexengine.quotes.aggregator import QuoteAggregator
from dexengine.quotes.sources import NativePoolSource, QuoteSource
from dexengine.routing.router import Router
from dexengine.settlement.coordinator import TwoPhaseCoordinator
from dexengine.settlement.ledger import LedgerClient, SimulatedLedger
from dexengine.storage import Store, open_store

logger = structlog.get_logger()


@dataclass
class Engine:
    config: EngineConfig
    store: Store
    registry: PoolRegistry
    positions: LiquidityLedger
    router: Router
    ledger: LedgerClient
    coordinator: TwoPhaseCoordinator
    aggregator: QuoteAggregator
    snapshots: SnapshotRecorder
    apy: ApyEstimator


def build_engine(
    config: EngineConfig | None = None,
    store: Store | None = None,
    ledger: LedgerClient | None = None,
    external_sources: Sequence[QuoteSource] = (),
    oracle: PriceOracle | None = None,
) -> Engine:
    """Wire an engine from configuration.

    Args:
        config: Engine configuration (defaults to DEFAULT_CONFIG)
        store: Persistence backend; opened from config.database_url if omitted
        ledger: Settlement ledger; a SimulatedLedger if omitted
        external_sources: Quote venues consulted next to the native pools
        oracle: USD prices for APY; without one, values are in token A units
    """
    config = config or DEFAULT_CONFIG
    store = store if store is not None else open_store(config.database_url)
    ledger = ledger if ledger is not None else SimulatedLedger()

    registry = PoolRegistry(store, namespace=config.pool_namespace, fee_bps=config.fees.lp_fee_bps)
    positions = LiquidityLedger(store)
    router = Router(
        registry,
        positions,
        store,
        fees=config.fees,
        treasury=config.treasury_account,
    )
    coordinator = TwoPhaseCoordinator(
        store,
        router,
        ledger,
        retry_policy=config.retry,
        operator_account=config.operator_account,
        stuck_after_minutes=config.stuck_after_minutes,
    )
    aggregator = QuoteAggregator(
        [NativePoolSource(registry), *external_sources],
        config=config.aggregator,
    )
    engine = Engine(
        config=config,
        store=store,
        registry=registry,
        positions=positions,
        router=router,
        ledger=ledger,
        coordinator=coordinator,
        aggregator=aggregator,
        snapshots=SnapshotRecorder(registry, store, interval=config.snapshot_interval),
        apy=ApyEstimator(registry, store, oracle=oracle),
    )
    logger.info(
        "engine_built",
        store=type(store).__name__,
        pools=len(registry),
        venues=[source.name for source in aggregator.sources],
    )
    return engine


__all__ = ["Engine", "build_engine"]
