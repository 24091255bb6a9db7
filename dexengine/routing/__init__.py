"""Swap and liquidity routing."""

from dexengine.routing.router import ProtocolFeeLedger, Router
from dexengine.routing.types import (
    AddLiquidityRequest,
    LiquidityExecution,
    LiquidityPlan,
    RemoveLiquidityRequest,
    SwapExecution,
    SwapHop,
    SwapKind,
    SwapPlan,
    SwapRequest,
)

__all__ = [
    "Router",
    "ProtocolFeeLedger",
    "SwapKind",
    "SwapRequest",
    "AddLiquidityRequest",
    "RemoveLiquidityRequest",
    "SwapHop",
    "SwapPlan",
    "LiquidityPlan",
    "SwapExecution",
    "LiquidityExecution",
]
