"""Liquidity position ledger.

Tracks each provider's share balance per pool. The ledger is derived state:
where the provider also holds an on-ledger share token, that balance is
authoritative. The minimum-liquidity lock is recorded under LOCKED_PROVIDER,
so for every pool the positions always sum to the pool's total_shares.
"""

from __future__ import annotations

import structlog

from dexengine.errors import InsufficientShares, InvalidAmount
from dexengine.storage.base import Store

logger = structlog.get_logger()


class LiquidityLedger:
    """Per-(pool, provider) share balances on top of a Store."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def credit(self, pool_id: str, provider: str, shares: int) -> int:
        """Add shares to a provider's position. Returns the new balance."""
        if shares <= 0:
            raise InvalidAmount(f"Credit must be positive, got {shares}")
        with self.store.unit_of_work():
            balance = self.store.get_position(pool_id, provider) + shares
            self.store.set_position(pool_id, provider, balance)
        logger.debug("position_credited", pool=pool_id, provider=provider, shares=shares)
        return balance

    def debit(self, pool_id: str, provider: str, shares: int) -> int:
        """Remove shares from a provider's position. Returns the new balance.

        Raises:
            InsufficientShares: If the position holds fewer than `shares`
        """
        if shares <= 0:
            raise InvalidAmount(f"Debit must be positive, got {shares}")
        with self.store.unit_of_work():
            current = self.store.get_position(pool_id, provider)
            if shares > current:
                raise InsufficientShares(
                    f"Provider {provider} holds {current} shares, cannot debit {shares}"
                )
            balance = current - shares
            self.store.set_position(pool_id, provider, balance)
        logger.debug("position_debited", pool=pool_id, provider=provider, shares=shares)
        return balance

    def position_of(self, pool_id: str, provider: str) -> int:
        return self.store.get_position(pool_id, provider)

    def all_positions(self, pool_id: str) -> list[tuple[str, int]]:
        """(provider, shares) pairs for a pool, for share-weighted analytics."""
        return self.store.list_positions(pool_id)

    def positions_of(self, provider: str) -> list[tuple[str, int]]:
        """(pool_id, shares) pairs held by a provider."""
        return self.store.list_provider_positions(provider)

    def total(self, pool_id: str) -> int:
        return sum(shares for _, shares in self.all_positions(pool_id))


__all__ = ["LiquidityLedger"]
