"""Factory functions for creating test objects.

Usage:
    from tests.helpers import make_stack, seed_pool

    stack = make_stack()
    seed_pool(stack.router, USDC, WETH, 1_000_000, 4_000_000)
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from dexengine.amm.pool import AmmPool
from dexengine.config import FeeSchedule
from dexengine.ledger.positions import LiquidityLedger
from dexengine.pools.registry import PoolRegistry
from dexengine.routing.router import Router
from dexengine.routing.types import LiquidityExecution
from dexengine.safe_int import isqrt
from dexengine.storage import MemoryStore, SqlStore, Store
from tests.helpers.constants import ALICE, DEADLINE

STORE_KINDS = ("memory", "sqlite")


def make_store(kind: str = "memory") -> Store:
    """Fresh empty store of the given kind ("memory" or "sqlite")."""
    if kind == "memory":
        return MemoryStore()
    if kind == "sqlite":
        return SqlStore("sqlite://")
    raise ValueError(f"Unknown store kind: {kind}")


def make_pool(
    token_a: str,
    token_b: str,
    reserve_a: int = 0,
    reserve_b: int = 0,
    fee_bps: int = 30,
    total_shares: int | None = None,
    pool_id: str = "0x" + "ab" * 20,
) -> AmmPool:
    """Standalone pool with the given reserves (in canonical token order).

    total_shares defaults to isqrt(reserve_a * reserve_b) when reserves are set.
    """
    if total_shares is None:
        total_shares = isqrt(reserve_a * reserve_b)
    return AmmPool(
        pool_id=pool_id,
        token_a=token_a,
        token_b=token_b,
        fee_bps=fee_bps,
        reserve_a=reserve_a,
        reserve_b=reserve_b,
        total_shares=total_shares,
    )


class FixedClock:
    """Settable clock returning unix seconds."""

    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FixedDateTimeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@dataclass
class Stack:
    """Store, registry, position ledger and router wired together."""

    store: Store
    registry: PoolRegistry
    positions: LiquidityLedger
    router: Router


def make_stack(
    store: Store | None = None,
    lp_fee_bps: int = 25,
    protocol_fee_bps: int = 5,
    clock: Callable[[], float] | None = None,
) -> Stack:
    store = store if store is not None else MemoryStore()
    registry = PoolRegistry(store, fee_bps=lp_fee_bps)
    positions = LiquidityLedger(store)
    fees = FeeSchedule(lp_fee_bps=lp_fee_bps, protocol_fee_bps=protocol_fee_bps)
    kwargs = {"clock": clock} if clock is not None else {}
    router = Router(registry, positions, store, fees=fees, **kwargs)
    return Stack(store=store, registry=registry, positions=positions, router=router)


def seed_pool(
    router: Router,
    token_a: str,
    token_b: str,
    amount_a: int,
    amount_b: int,
    provider: str = ALICE,
) -> LiquidityExecution:
    """Add liquidity through the router (creates the pool on first use)."""
    return router.add_liquidity(token_a, token_b, amount_a, amount_b, 0, 0, provider, DEADLINE)
