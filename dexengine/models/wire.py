"""Pydantic models for the HTTP API.

Amounts travel as decimal strings (ints are accepted on input) so that
uint256 values survive JSON clients without precision loss.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from dexengine.amm.pool import AmmPool
from dexengine.analytics.snapshots import ApyEstimate
from dexengine.constants import BPS_DENOMINATOR
from dexengine.models.transaction import PendingTransaction, TransactionState, TransactionType
from dexengine.models.types import Amount
from dexengine.quotes.aggregator import BestQuote
from dexengine.routing.types import LiquidityExecution, SwapExecution, SwapKind

# --- Pools -------------------------------------------------------------------


class CreatePoolRequest(BaseModel):
    token_a: str
    token_b: str
    fee_bps: int | None = Field(default=None, ge=0, lt=BPS_DENOMINATOR)


class PoolResponse(BaseModel):
    pool_id: str
    token_a: str
    token_b: str
    fee_bps: int
    reserve_a: Amount
    reserve_b: Amount
    total_shares: Amount
    active: bool
    version: int

    @classmethod
    def from_pool(cls, pool: AmmPool) -> PoolResponse:
        with pool.lock:
            return cls(
                pool_id=pool.pool_id,
                token_a=pool.token_a,
                token_b=pool.token_b,
                fee_bps=pool.fee_bps,
                reserve_a=pool.reserve_a,
                reserve_b=pool.reserve_b,
                total_shares=pool.total_shares,
                active=pool.active,
                version=pool.version,
            )


class PositionResponse(BaseModel):
    pool_id: str
    provider: str
    shares: Amount


class SnapshotResponse(BaseModel):
    pool_id: str
    reserve_a: Amount
    reserve_b: Amount
    timestamp: datetime
    recorded: bool


class ApyResponse(BaseModel):
    pool_id: str
    apy: float
    volume_24h: float
    tvl_usd: float
    snapshot_at: datetime | None = None
    reason: str | None = None

    @classmethod
    def from_estimate(cls, pool_id: str, estimate: ApyEstimate) -> ApyResponse:
        return cls(
            pool_id=pool_id,
            apy=estimate.apy,
            volume_24h=estimate.volume_24h,
            tvl_usd=estimate.tvl_usd,
            snapshot_at=estimate.snapshot_at,
            reason=estimate.reason,
        )


# --- Quotes ------------------------------------------------------------------


class QuoteRequest(BaseModel):
    token_in: str
    token_out: str
    amount_in: Amount


class QuoteResponse(BaseModel):
    venue: str
    amount_out: Amount
    fee_taken: Amount
    net_in: Amount
    has_route: bool
    route_ref: str | None = None
    price_impact: float | None = None

    @classmethod
    def from_quote(cls, quote: BestQuote) -> QuoteResponse:
        return cls(
            venue=quote.venue,
            amount_out=quote.amount_out,
            fee_taken=quote.fee_taken,
            net_in=quote.net_in,
            has_route=quote.has_route,
            route_ref=quote.route_ref,
            price_impact=quote.price_impact,
        )


# --- Direct execution --------------------------------------------------------


class SwapExactInRequest(BaseModel):
    amount_in: Amount
    amount_out_min: Amount = 0
    path: list[str] = Field(min_length=2)
    to: str
    deadline: int


class SwapExactOutRequest(BaseModel):
    amount_out: Amount
    amount_in_max: Amount
    path: list[str] = Field(min_length=2)
    to: str
    deadline: int


class SwapResponse(BaseModel):
    path: list[str]
    to: str
    amount_in: Amount
    amount_out: Amount
    protocol_fee: Amount

    @classmethod
    def from_execution(cls, execution: SwapExecution) -> SwapResponse:
        return cls(
            path=list(execution.path),
            to=execution.to,
            amount_in=execution.amount_in,
            amount_out=execution.amount_out,
            protocol_fee=execution.protocol_fee,
        )


class CalldataRequest(BaseModel):
    kind: SwapKind = SwapKind.EXACT_IN
    amount: Amount
    limit: Amount
    path: list[str] = Field(min_length=2)
    to: str
    deadline: int


class CalldataResponse(BaseModel):
    target: str
    calldata: str


class AddLiquidityBody(BaseModel):
    token_a: str
    token_b: str
    amount_a_desired: Amount
    amount_b_desired: Amount
    amount_a_min: Amount = 0
    amount_b_min: Amount = 0
    to: str
    deadline: int


class RemoveLiquidityBody(BaseModel):
    token_a: str
    token_b: str
    liquidity: Amount
    amount_a_min: Amount = 0
    amount_b_min: Amount = 0
    to: str
    deadline: int
    provider: str | None = None


class LiquidityResponse(BaseModel):
    pool_id: str
    to: str
    amount_a: Amount
    amount_b: Amount
    shares: Amount
    locked_shares: Amount = 0

    @classmethod
    def from_execution(cls, execution: LiquidityExecution) -> LiquidityResponse:
        return cls(**execution.to_dict())


# --- Two-phase transactions --------------------------------------------------


class TwoPhaseSwapRequest(BaseModel):
    user_address: str
    kind: SwapKind = SwapKind.EXACT_IN
    amount: Amount
    limit: Amount
    path: list[str] = Field(min_length=2)
    to: str
    deadline: int


class TwoPhaseAddLiquidityRequest(AddLiquidityBody):
    user_address: str


class TwoPhaseRemoveLiquidityRequest(RemoveLiquidityBody):
    user_address: str


class Tx1CompleteRequest(BaseModel):
    tx1_hash: str = Field(min_length=1)


class RecoverRequest(BaseModel):
    recovery_tx_hash: str = Field(min_length=1)


class TransactionResponse(BaseModel):
    id: str
    type: TransactionType
    user_address: str
    pool_id: str
    state: TransactionState
    params: dict[str, Any]
    created_at: datetime
    tx1_hash: str | None = None
    tx2_hash: str | None = None
    recovery_tx_hash: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    tx1_completed_at: datetime | None = None
    tx2_completed_at: datetime | None = None
    tx2_failed_at: datetime | None = None
    recovered_at: datetime | None = None
    result: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, tx: PendingTransaction) -> TransactionResponse:
        return cls(
            id=tx.id,
            type=tx.type,
            user_address=tx.user_address,
            pool_id=tx.pool_id,
            state=tx.state,
            params=tx.params,
            created_at=tx.created_at,
            tx1_hash=tx.tx1_hash,
            tx2_hash=tx.tx2_hash,
            recovery_tx_hash=tx.recovery_tx_hash,
            error_message=tx.error_message,
            retry_count=tx.retry_count,
            tx1_completed_at=tx.tx1_completed_at,
            tx2_completed_at=tx.tx2_completed_at,
            tx2_failed_at=tx.tx2_failed_at,
            recovered_at=tx.recovered_at,
            result=tx.result,
        )
