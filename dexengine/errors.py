"""Error taxonomy for the exchange engine.

Families:
- ValidationError: caller mistakes. Surfaced immediately, never retried.
- LiquidityError: missing pools or reserves. Surfaced immediately.
- InvariantViolation: internal-consistency failures. The state change is rejected.
- TransientError: network/timeout talking to a ledger or quote venue. Retried.
- SettlementError: misuse of the two-phase transaction state machine.

Each class carries a stable machine-readable `code` and the HTTP status the
API layer answers with.
"""

from __future__ import annotations

from dexengine.safe_int import SafeIntError


class DexError(Exception):
    """Base class for all engine errors."""

    code: str = "dex_error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)

    @property
    def detail(self) -> str:
        return str(self.args[0]) if self.args else self.code


# --- Validation errors -------------------------------------------------------


class ValidationError(DexError):
    code = "validation_error"


class InvalidToken(ValidationError):
    code = "invalid_token"


class IdenticalTokens(ValidationError):
    code = "identical_tokens"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidPath(ValidationError):
    code = "invalid_path"


class Expired(ValidationError):
    code = "expired"


class SlippageExceeded(ValidationError):
    code = "slippage_exceeded"


class InsufficientShares(ValidationError):
    code = "insufficient_shares"


class InsufficientBalance(ValidationError):
    code = "insufficient_balance"


# --- Liquidity errors --------------------------------------------------------


class LiquidityError(DexError):
    code = "liquidity_error"


class InsufficientLiquidity(LiquidityError):
    code = "insufficient_liquidity"


class InsufficientInitialLiquidity(LiquidityError):
    code = "insufficient_initial_liquidity"


class InsufficientLiquidityMinted(LiquidityError):
    code = "insufficient_liquidity_minted"


class InsufficientLiquidityBurned(LiquidityError):
    code = "insufficient_liquidity_burned"


class PoolNotFound(LiquidityError):
    code = "pool_not_found"
    status_code = 404


class PairExists(LiquidityError):
    code = "pair_exists"
    status_code = 409


class PoolPaused(LiquidityError):
    code = "pool_paused"
    status_code = 423


# --- Invariant violations ----------------------------------------------------


class InvariantViolation(DexError):
    code = "invariant_violation"
    status_code = 500


class ReserveOverflow(InvariantViolation):
    code = "reserve_overflow"


# --- Transient infrastructure errors -----------------------------------------


class TransientError(DexError):
    code = "transient_error"
    status_code = 503
    retryable = True


class LedgerTimeout(TransientError):
    code = "ledger_timeout"
    status_code = 504


class LedgerUnavailable(TransientError):
    code = "ledger_unavailable"


class VenueUnavailable(TransientError):
    code = "venue_unavailable"


# --- Two-phase state machine errors ------------------------------------------


class SettlementError(DexError):
    code = "settlement_error"


class TransactionNotFound(SettlementError):
    code = "transaction_not_found"
    status_code = 404


class InvalidTransition(SettlementError):
    code = "invalid_transition"
    status_code = 409


def is_transient(error: BaseException) -> bool:
    """Decide whether a failure is worth retrying.

    Engine errors answer through their `retryable` flag. Arithmetic errors
    are deterministic and never retried. Bare OS-level connection and timeout
    errors coming out of a ledger client are treated as transient; anything
    else is not.
    """
    if isinstance(error, DexError):
        return error.retryable
    if isinstance(error, SafeIntError | ValueError | TypeError):
        return False
    return isinstance(error, TimeoutError | ConnectionError)


__all__ = [
    "DexError",
    "ValidationError",
    "InvalidToken",
    "IdenticalTokens",
    "InvalidAmount",
    "InvalidPath",
    "Expired",
    "SlippageExceeded",
    "InsufficientShares",
    "InsufficientBalance",
    "LiquidityError",
    "InsufficientLiquidity",
    "InsufficientInitialLiquidity",
    "InsufficientLiquidityMinted",
    "InsufficientLiquidityBurned",
    "PoolNotFound",
    "PairExists",
    "PoolPaused",
    "InvariantViolation",
    "ReserveOverflow",
    "TransientError",
    "LedgerTimeout",
    "LedgerUnavailable",
    "VenueUnavailable",
    "SettlementError",
    "TransactionNotFound",
    "InvalidTransition",
    "is_transient",
]
