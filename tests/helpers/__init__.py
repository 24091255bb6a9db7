"""Test helpers module for shared test utilities.

This module consolidates common test utilities to reduce duplication:
- constants: Token ids, accounts and a far-future deadline
- factories: Store, pool and router factory functions
"""

from tests.helpers.constants import (
    ALICE,
    BOB,
    CAROL,
    DAI,
    DEADLINE,
    KTA,
    RIDE,
    TOKEN_DECIMALS,
    USDC,
    WETH,
)
from tests.helpers.factories import (
    STORE_KINDS,
    FixedClock,
    FixedDateTimeClock,
    Stack,
    make_pool,
    make_stack,
    make_store,
    seed_pool,
)

__all__ = [
    # Constants
    "WETH",
    "USDC",
    "DAI",
    "KTA",
    "RIDE",
    "ALICE",
    "BOB",
    "CAROL",
    "DEADLINE",
    "TOKEN_DECIMALS",
    # Factories
    "STORE_KINDS",
    "FixedClock",
    "FixedDateTimeClock",
    "Stack",
    "make_pool",
    "make_stack",
    "make_store",
    "seed_pool",
]
