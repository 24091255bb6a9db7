"""Protocol constants for the exchange engine.

Centralizes fee units, the minimum-liquidity lock and default fee legs.
"""

# Basis-point denominator (10_000 bps = 100%)
BPS_DENOMINATOR = 10_000

# Shares permanently locked on the first deposit into a pool so the share
# price cannot be manipulated through a near-zero first mint
MINIMUM_LIQUIDITY = 1_000

# Provider id that owns the locked minimum liquidity (mirrors minting to the
# zero address on-chain)
LOCKED_PROVIDER = "0x0000000000000000000000000000000000000000"

# Default fee legs on the ledger-backed network: 25 bps stays in the pool for
# LPs, 5 bps is routed to the treasury as a separate transfer
DEFAULT_LP_FEE_BPS = 25
DEFAULT_PROTOCOL_FEE_BPS = 5

# Flat fee the quote aggregator deducts from the input before quoting
DEFAULT_AGGREGATOR_FEE_BPS = 30

# Native venue wins when its output is within this many bps of the best
# external output
DEFAULT_NATIVE_PREFERENCE_BPS = 100

# External quotes below net_in // SANITY_FLOOR_DIVISOR are treated as broken routes
SANITY_FLOOR_DIVISOR = 1_000_000

# Venue name used for quotes served by the engine's own pools
NATIVE_VENUE = "native"
NO_ROUTE_VENUE = "none"
