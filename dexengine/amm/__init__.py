"""AMM (Automated Market Maker) math and pool state."""

from dexengine.amm.base import (
    AMM,
    BurnResult,
    Direction,
    MintResult,
    PoolEvent,
    PoolEventKind,
    SwapResult,
)
from dexengine.amm.constant_product import ConstantProductAMM, constant_product
from dexengine.amm.pool import AmmPool, PoolState

__all__ = [
    # Base classes
    "AMM",
    "Direction",
    "SwapResult",
    "MintResult",
    "BurnResult",
    "PoolEvent",
    "PoolEventKind",
    # Constant product
    "ConstantProductAMM",
    "constant_product",
    "AmmPool",
    "PoolState",
]
