"""Type definitions for the routing module.

Requests carry the caller's original parameters. Plans are computed against
a specific pool version and committed later (immediately for direct
execution, after the user-side transfer for two-phase settlement).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from dexengine.amm.base import BurnResult, MintResult, SwapResult


class SwapKind(str, Enum):
    EXACT_IN = "exact_in"
    EXACT_OUT = "exact_out"


@dataclass(frozen=True)
class SwapRequest:
    """swapExactTokensForTokens / swapTokensForExactTokens parameters.

    For EXACT_IN, `amount` is the input and `limit` the minimum output.
    For EXACT_OUT, `amount` is the output and `limit` the maximum input.
    """

    kind: SwapKind
    amount: int
    limit: int
    path: tuple[str, ...]
    to: str
    deadline: int

    def to_params(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "amount": self.amount,
            "limit": self.limit,
            "path": list(self.path),
            "to": self.to,
            "deadline": self.deadline,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> SwapRequest:
        return cls(
            kind=SwapKind(params["kind"]),
            amount=int(params["amount"]),
            limit=int(params["limit"]),
            path=tuple(params["path"]),
            to=params["to"],
            deadline=int(params["deadline"]),
        )


@dataclass(frozen=True)
class AddLiquidityRequest:
    token_a: str
    token_b: str
    amount_a_desired: int
    amount_b_desired: int
    amount_a_min: int
    amount_b_min: int
    to: str
    deadline: int

    def to_params(self) -> dict[str, Any]:
        return {
            "token_a": self.token_a,
            "token_b": self.token_b,
            "amount_a_desired": self.amount_a_desired,
            "amount_b_desired": self.amount_b_desired,
            "amount_a_min": self.amount_a_min,
            "amount_b_min": self.amount_b_min,
            "to": self.to,
            "deadline": self.deadline,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> AddLiquidityRequest:
        return cls(
            token_a=params["token_a"],
            token_b=params["token_b"],
            amount_a_desired=int(params["amount_a_desired"]),
            amount_b_desired=int(params["amount_b_desired"]),
            amount_a_min=int(params["amount_a_min"]),
            amount_b_min=int(params["amount_b_min"]),
            to=params["to"],
            deadline=int(params["deadline"]),
        )


@dataclass(frozen=True)
class RemoveLiquidityRequest:
    """removeLiquidity parameters.

    `provider` owns the shares being burned; `to` receives the tokens.
    """

    token_a: str
    token_b: str
    liquidity: int
    amount_a_min: int
    amount_b_min: int
    to: str
    deadline: int
    provider: str

    def to_params(self) -> dict[str, Any]:
        return {
            "token_a": self.token_a,
            "token_b": self.token_b,
            "liquidity": self.liquidity,
            "amount_a_min": self.amount_a_min,
            "amount_b_min": self.amount_b_min,
            "to": self.to,
            "deadline": self.deadline,
            "provider": self.provider,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> RemoveLiquidityRequest:
        return cls(
            token_a=params["token_a"],
            token_b=params["token_b"],
            liquidity=int(params["liquidity"]),
            amount_a_min=int(params["amount_a_min"]),
            amount_b_min=int(params["amount_b_min"]),
            to=params["to"],
            deadline=int(params["deadline"]),
            provider=params["provider"],
        )


@dataclass(frozen=True)
class SwapHop:
    """One planned hop: the pool, the version it was priced at, the result."""

    pool_id: str
    version: int
    result: SwapResult


@dataclass(frozen=True)
class SwapPlan:
    """A priced swap along a path.

    Attributes:
        amount_in: Gross input paid by the user (protocol fee included)
        protocol_fee: Part of amount_in routed to the treasury
        amount_out: Output delivered to `request.to`
    """

    request: SwapRequest
    hops: tuple[SwapHop, ...]
    amount_in: int
    protocol_fee: int
    amount_out: int

    @property
    def token_in(self) -> str:
        return self.hops[0].result.token_in

    @property
    def token_out(self) -> str:
        return self.hops[-1].result.token_out

    @property
    def amounts(self) -> list[int]:
        """Net amounts along the path: [into hop 1, out of hop 1, ..., out of hop n]."""
        return [self.hops[0].result.amount_in] + [h.result.amount_out for h in self.hops]


@dataclass(frozen=True)
class LiquidityPlan:
    """A priced deposit or withdrawal against one pool.

    `flipped` is True when the caller's token_a is the pool's token_b, in
    which case amounts are swapped back into the caller's order on output.
    """

    request: AddLiquidityRequest | RemoveLiquidityRequest
    pool_id: str
    version: int
    result: MintResult | BurnResult
    flipped: bool

    @property
    def amount_a(self) -> int:
        return self.result.amount_b if self.flipped else self.result.amount_a

    @property
    def amount_b(self) -> int:
        return self.result.amount_a if self.flipped else self.result.amount_b


@dataclass(frozen=True)
class SwapExecution:
    path: tuple[str, ...]
    to: str
    amount_in: int
    amount_out: int
    protocol_fee: int
    hops: tuple[SwapResult, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": list(self.path),
            "to": self.to,
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "protocol_fee": self.protocol_fee,
        }


@dataclass(frozen=True)
class LiquidityExecution:
    """Committed deposit/withdrawal, amounts in the caller's token order."""

    pool_id: str
    to: str
    amount_a: int
    amount_b: int
    shares: int
    locked_shares: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "to": self.to,
            "amount_a": self.amount_a,
            "amount_b": self.amount_b,
            "shares": self.shares,
            "locked_shares": self.locked_shares,
        }


__all__ = [
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
