"""API endpoints for the exchange engine."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from functools import partial
from typing import Any, TypeVar

import structlog
from fastapi import APIRouter, Depends, Request

from dexengine.engine import Engine
from dexengine.models.transaction import TransactionType
from dexengine.models.wire import (
    AddLiquidityBody,
    ApyResponse,
    CalldataRequest,
    CalldataResponse,
    CreatePoolRequest,
    LiquidityResponse,
    PoolResponse,
    PositionResponse,
    QuoteRequest,
    QuoteResponse,
    RecoverRequest,
    RemoveLiquidityBody,
    SnapshotResponse,
    SwapExactInRequest,
    SwapExactOutRequest,
    SwapResponse,
    TransactionResponse,
    TwoPhaseAddLiquidityRequest,
    TwoPhaseRemoveLiquidityRequest,
    TwoPhaseSwapRequest,
    Tx1CompleteRequest,
)
from dexengine.routing.types import AddLiquidityRequest, RemoveLiquidityRequest, SwapRequest

logger = structlog.get_logger()

router = APIRouter()

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run synchronous engine work (pool locks, store I/O) in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


def get_engine(request: Request) -> Engine:
    """Dependency provider for the engine built in the app lifespan.

    Override this in tests to inject a prepared engine:
        app.dependency_overrides[get_engine] = lambda: engine
    """
    return request.app.state.engine


# --- Pools -------------------------------------------------------------------


@router.get("/pools")
async def list_pools(engine: Engine = Depends(get_engine)) -> list[PoolResponse]:
    return [PoolResponse.from_pool(pool) for pool in engine.registry.all_pools()]


@router.post("/pools", status_code=201)
async def create_pool(body: CreatePoolRequest, engine: Engine = Depends(get_engine)) -> PoolResponse:
    """Create a pool for a pair. 409 if the pair already has one."""
    pool = await run_blocking(engine.registry.create, body.token_a, body.token_b, fee_bps=body.fee_bps)
    return PoolResponse.from_pool(pool)


@router.get("/pools/lookup")
async def lookup_pool(token_a: str, token_b: str, engine: Engine = Depends(get_engine)) -> PoolResponse:
    return PoolResponse.from_pool(engine.registry.get(token_a, token_b))


@router.get("/pools/{pool_id}")
async def get_pool(pool_id: str, engine: Engine = Depends(get_engine)) -> PoolResponse:
    return PoolResponse.from_pool(engine.registry.by_id(pool_id))


@router.post("/pools/{pool_id}/pause")
async def pause_pool(pool_id: str, engine: Engine = Depends(get_engine)) -> PoolResponse:
    return PoolResponse.from_pool(await run_blocking(engine.registry.pause, pool_id))


@router.post("/pools/{pool_id}/resume")
async def resume_pool(pool_id: str, engine: Engine = Depends(get_engine)) -> PoolResponse:
    return PoolResponse.from_pool(await run_blocking(engine.registry.resume, pool_id))


@router.get("/pools/{pool_id}/positions")
async def list_positions(pool_id: str, engine: Engine = Depends(get_engine)) -> list[PositionResponse]:
    pool = engine.registry.by_id(pool_id)
    positions = await run_blocking(engine.positions.all_positions, pool.pool_id)
    return [
        PositionResponse(pool_id=pool.pool_id, provider=provider, shares=shares)
        for provider, shares in positions
    ]


@router.get("/positions/{provider}")
async def provider_positions(provider: str, engine: Engine = Depends(get_engine)) -> list[PositionResponse]:
    positions = await run_blocking(engine.positions.positions_of, provider)
    return [
        PositionResponse(pool_id=pool_id, provider=provider, shares=shares)
        for pool_id, shares in positions
    ]


@router.post("/pools/{pool_id}/snapshot")
async def record_snapshot(pool_id: str, engine: Engine = Depends(get_engine)) -> SnapshotResponse:
    pool = engine.registry.by_id(pool_id)
    recorded = await run_blocking(engine.snapshots.record_snapshot, pool.pool_id)
    now = engine.snapshots.clock()
    snapshot = recorded or await run_blocking(engine.store.latest_snapshot_at_or_before, pool.pool_id, now)
    return SnapshotResponse(
        pool_id=pool.pool_id,
        reserve_a=snapshot.reserve_a if snapshot else 0,
        reserve_b=snapshot.reserve_b if snapshot else 0,
        timestamp=snapshot.timestamp if snapshot else now,
        recorded=recorded is not None,
    )


@router.get("/pools/{pool_id}/apy")
async def pool_apy(pool_id: str, engine: Engine = Depends(get_engine)) -> ApyResponse:
    pool = engine.registry.by_id(pool_id)
    estimate = await run_blocking(engine.apy.estimate_apy, pool.pool_id)
    return ApyResponse.from_estimate(pool.pool_id, estimate)


# --- Quotes and direct execution ---------------------------------------------


@router.post("/quote")
async def quote(body: QuoteRequest, engine: Engine = Depends(get_engine)) -> QuoteResponse:
    best = await engine.aggregator.get_best_quote(body.token_in, body.token_out, body.amount_in)
    return QuoteResponse.from_quote(best)


@router.post("/swap/exact-in")
async def swap_exact_in(body: SwapExactInRequest, engine: Engine = Depends(get_engine)) -> SwapResponse:
    execution = await run_blocking(
        engine.router.swap_exact_tokens_for_tokens,
        body.amount_in,
        body.amount_out_min,
        body.path,
        body.to,
        body.deadline,
    )
    return SwapResponse.from_execution(execution)


@router.post("/swap/exact-out")
async def swap_exact_out(body: SwapExactOutRequest, engine: Engine = Depends(get_engine)) -> SwapResponse:
    execution = await run_blocking(
        engine.router.swap_tokens_for_exact_tokens,
        body.amount_out,
        body.amount_in_max,
        body.path,
        body.to,
        body.deadline,
    )
    return SwapResponse.from_execution(execution)


@router.post("/swap/calldata")
async def swap_calldata(body: CalldataRequest, engine: Engine = Depends(get_engine)) -> CalldataResponse:
    """Router calldata for running the same swap on an EVM deployment."""
    request = SwapRequest(body.kind, body.amount, body.limit, tuple(body.path), body.to, body.deadline)
    target, calldata = engine.router.calldata_for_swap(request)
    return CalldataResponse(target=target, calldata=calldata)


@router.post("/liquidity/add")
async def add_liquidity(body: AddLiquidityBody, engine: Engine = Depends(get_engine)) -> LiquidityResponse:
    execution = await run_blocking(
        engine.router.add_liquidity,
        body.token_a,
        body.token_b,
        body.amount_a_desired,
        body.amount_b_desired,
        body.amount_a_min,
        body.amount_b_min,
        body.to,
        body.deadline,
    )
    return LiquidityResponse.from_execution(execution)


@router.post("/liquidity/remove")
async def remove_liquidity(body: RemoveLiquidityBody, engine: Engine = Depends(get_engine)) -> LiquidityResponse:
    execution = await run_blocking(
        engine.router.remove_liquidity,
        body.token_a,
        body.token_b,
        body.liquidity,
        body.amount_a_min,
        body.amount_b_min,
        body.to,
        body.deadline,
        provider=body.provider,
    )
    return LiquidityResponse.from_execution(execution)


# --- Two-phase transactions --------------------------------------------------


@router.post("/transactions/swap", status_code=201)
async def create_swap_transaction(
    body: TwoPhaseSwapRequest,
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    request = SwapRequest(body.kind, body.amount, body.limit, tuple(body.path), body.to, body.deadline)
    tx = await run_blocking(
        engine.coordinator.create, TransactionType.SWAP, body.user_address, request.to_params()
    )
    return TransactionResponse.from_record(tx)


@router.post("/transactions/add-liquidity", status_code=201)
async def create_add_liquidity_transaction(
    body: TwoPhaseAddLiquidityRequest,
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    request = AddLiquidityRequest(
        body.token_a,
        body.token_b,
        body.amount_a_desired,
        body.amount_b_desired,
        body.amount_a_min,
        body.amount_b_min,
        body.to,
        body.deadline,
    )
    tx = await run_blocking(
        engine.coordinator.create, TransactionType.ADD_LIQUIDITY, body.user_address, request.to_params()
    )
    return TransactionResponse.from_record(tx)


@router.post("/transactions/remove-liquidity", status_code=201)
async def create_remove_liquidity_transaction(
    body: TwoPhaseRemoveLiquidityRequest,
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    request = RemoveLiquidityRequest(
        body.token_a,
        body.token_b,
        body.liquidity,
        body.amount_a_min,
        body.amount_b_min,
        body.to,
        body.deadline,
        body.provider or body.user_address,
    )
    tx = await run_blocking(
        engine.coordinator.create, TransactionType.REMOVE_LIQUIDITY, body.user_address, request.to_params()
    )
    return TransactionResponse.from_record(tx)


@router.get("/transactions/stuck")
async def list_stuck(
    older_than_minutes: int | None = None,
    engine: Engine = Depends(get_engine),
) -> list[TransactionResponse]:
    stuck = await run_blocking(engine.coordinator.list_stuck, older_than_minutes)
    return [TransactionResponse.from_record(tx) for tx in stuck]


@router.get("/transactions/failed")
async def list_failed(engine: Engine = Depends(get_engine)) -> list[TransactionResponse]:
    failed = await run_blocking(engine.coordinator.list_failed)
    return [TransactionResponse.from_record(tx) for tx in failed]


@router.get("/transactions/{tx_id}")
async def get_transaction(tx_id: str, engine: Engine = Depends(get_engine)) -> TransactionResponse:
    return TransactionResponse.from_record(await run_blocking(engine.coordinator.get, tx_id))


@router.post("/transactions/{tx_id}/tx1")
async def complete_tx1(
    tx_id: str,
    body: Tx1CompleteRequest,
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    """Record the user's transfer, then settle the operator side.

    A settlement failure is not an HTTP error: TX1 stands, and the response
    carries the TX2_FAILED record with the reason.
    """
    await run_blocking(engine.coordinator.mark_tx1_complete, tx_id, body.tx1_hash)
    tx = await engine.coordinator.attempt_tx2(tx_id)
    if tx.error_message:
        logger.warning("tx2_not_settled", tx_id=tx_id, state=tx.state.value, error=tx.error_message)
    return TransactionResponse.from_record(tx)


@router.post("/transactions/{tx_id}/settle")
async def settle_transaction(tx_id: str, engine: Engine = Depends(get_engine)) -> TransactionResponse:
    return TransactionResponse.from_record(await engine.coordinator.attempt_tx2(tx_id))


@router.post("/transactions/{tx_id}/recover")
async def recover_transaction(
    tx_id: str,
    body: RecoverRequest,
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    tx = await run_blocking(engine.coordinator.mark_recovered, tx_id, body.recovery_tx_hash)
    return TransactionResponse.from_record(tx)
