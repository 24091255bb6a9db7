"""Base classes and result types for AMM implementations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Direction(str, Enum):
    """Swap direction relative to the pool's canonical token order."""

    A_TO_B = "a_to_b"
    B_TO_A = "b_to_a"


@dataclass(frozen=True)
class SwapResult:
    """Result of a swap through a single pool.

    `amount_in` is the balance delta the pool actually received;
    `fee_amount` is the LP fee retained in reserves.
    """

    pool_id: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee_amount: int
    reserve_a: int
    reserve_b: int


@dataclass(frozen=True)
class MintResult:
    pool_id: str
    amount_a: int
    amount_b: int
    shares: int
    # Shares locked forever on the first deposit (0 afterwards)
    locked_shares: int
    reserve_a: int
    reserve_b: int
    total_shares: int


@dataclass(frozen=True)
class BurnResult:
    pool_id: str
    shares: int
    amount_a: int
    amount_b: int
    reserve_a: int
    reserve_b: int
    total_shares: int


class PoolEventKind(str, Enum):
    SWAP = "swap"
    MINT = "mint"
    BURN = "burn"
    # Reserves changed: precedes every swap, mint and burn event, and follows a rollback
    SYNC = "sync"


@dataclass(frozen=True)
class PoolEvent:
    """Emitted after every committed pool mutation."""

    kind: PoolEventKind
    pool_id: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AMM(ABC):
    """Abstract base class for AMM pricing implementations.

    Implementations may extend the base method signatures with additional
    optional parameters, e.g. a fee in basis points.
    """

    @abstractmethod
    def quote_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        """Output amount for an exact input."""
        ...

    @abstractmethod
    def quote_in(self, amount_out: int, reserve_in: int, reserve_out: int) -> int:
        """Input amount required for an exact output."""
        ...

    @abstractmethod
    def encode_swap(
        self,
        amount_in: int,
        amount_out_min: int,
        path: list[str],
        recipient: str,
        deadline: int,
    ) -> tuple[str, str]:
        """Encode a swap as (target_address, calldata)."""
        ...
