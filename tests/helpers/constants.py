"""Shared token and account constants for tests.

EVM addresses are lowercase for consistency with normalize_token().

Usage:
    from tests.helpers import WETH, USDC
    # or
    from tests.helpers.constants import WETH, USDC
"""

# =============================================================================
# EVM tokens (canonical order: DAI < USDC < WETH)
# =============================================================================

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"  # Wrapped Ether (18 decimals)
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"  # USD Coin (6 decimals)
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"  # Dai Stablecoin (18 decimals)

# =============================================================================
# Ledger token ids (opaque account identifiers)
# =============================================================================

KTA = "keeta_token_kta"
RIDE = "keeta_token_ride"

# =============================================================================
# Accounts
# =============================================================================

ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"
CAROL = "keeta_account_carol"

# Far-future deadline (unix seconds)
DEADLINE = 4_102_444_800  # 2100-01-01

TOKEN_DECIMALS = {
    WETH: 18,
    USDC: 6,
    DAI: 18,
}


__all__ = [
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
]
