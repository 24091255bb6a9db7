"""Liquidity position accounting."""

from dexengine.ledger.positions import LiquidityLedger

__all__ = ["LiquidityLedger"]
