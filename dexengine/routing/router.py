"""Swap and liquidity execution surface.

Mirrors the V2 router: addLiquidity, removeLiquidity, swapExactTokensForTokens
and swapTokensForExactTokens, each with an explicit deadline. Multi-hop swaps
walk the given path pair by pair; no route search is done here.

Every operation is split into plan (price against current pool state) and
commit (write reserves, positions and pool rows in one unit of work). Direct
execution does both under the same pool locks; the two-phase coordinator
plans first and commits after the user-side transfer has landed.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import ExitStack, contextmanager

import structlog

from dexengine.amm.base import BurnResult, MintResult
from dexengine.amm.constant_product import ConstantProductAMM, constant_product
from dexengine.amm.pool import AmmPool
from dexengine.config import FeeSchedule
from dexengine.constants import BPS_DENOMINATOR, LOCKED_PROVIDER
from dexengine.errors import (
    Expired,
    InvalidAmount,
    InvalidPath,
    SlippageExceeded,
)
from dexengine.ledger.positions import LiquidityLedger
from dexengine.models.types import normalize_token
from dexengine.pools.registry import PoolRegistry
from dexengine.routing.types import (
    AddLiquidityRequest,
    LiquidityExecution,
    LiquidityPlan,
    RemoveLiquidityRequest,
    SwapExecution,
    SwapHop,
    SwapKind,
    SwapPlan,
    SwapRequest,
)
from dexengine.safe_int import S
from dexengine.storage.base import Store

logger = structlog.get_logger()


class ProtocolFeeLedger:
    """Protocol fee accrued to the treasury account, per token.

    Accruals are written through the store, so they commit with the swap that
    produced them and survive restarts.
    """

    def __init__(self, store: Store, treasury: str) -> None:
        self.store = store
        self.treasury = treasury

    def accrue(self, token: str, amount: int) -> None:
        if amount <= 0:
            return
        self.store.add_protocol_fee(token, amount)
        logger.debug("protocol_fee_accrued", token=token, amount=amount, treasury=self.treasury)

    def accrued(self, token: str) -> int:
        return self.store.protocol_fees().get(normalize_token(token), 0)

    def balances(self) -> dict[str, int]:
        return self.store.protocol_fees()


class Router:
    """Executes swaps and liquidity changes against registry pools."""

    def __init__(
        self,
        registry: PoolRegistry,
        ledger: LiquidityLedger,
        store: Store,
        fees: FeeSchedule | None = None,
        treasury: str = "treasury",
        clock: Callable[[], float] = time.time,
        amm: ConstantProductAMM | None = None,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.store = store
        self.fees = fees or FeeSchedule()
        self.protocol_fees = ProtocolFeeLedger(store, treasury)
        self.clock = clock
        self.amm = amm or constant_product

    # --- Guards --------------------------------------------------------------

    def ensure_not_expired(self, deadline: int) -> None:
        """Raises Expired once the clock has passed `deadline` (unix seconds)."""
        now = int(self.clock())
        if now > deadline:
            raise Expired(f"Deadline {deadline} passed (now {now})")

    def _resolve_path(self, path: Sequence[str]) -> list[AmmPool]:
        if len(path) < 2:
            raise InvalidPath(f"Path needs at least two tokens, got {len(path)}")
        pools = [self.registry.get(path[i], path[i + 1]) for i in range(len(path) - 1)]
        if len({pool.pool_id for pool in pools}) != len(pools):
            raise InvalidPath("Path visits the same pool twice")
        return pools

    @contextmanager
    def locked(self, pools: Sequence[AmmPool]) -> Iterator[None]:
        # Acquired in pool_id order
        with ExitStack() as stack:
            for pool in sorted(pools, key=lambda p: p.pool_id):
                stack.enter_context(pool.lock)
            yield

    @contextmanager
    def _atomic(self, pools: Sequence[AmmPool]) -> Iterator[None]:
        """Unit of work that also rolls back in-memory pool state on failure."""
        saved = [pool.state for pool in pools]
        try:
            with self.store.unit_of_work():
                yield
        except BaseException:
            for pool, state in zip(pools, saved, strict=True):
                pool.restore(state)
            raise

    # --- Swaps ---------------------------------------------------------------

    def plan_swap(self, request: SwapRequest) -> SwapPlan:
        """Price a swap along its path against current reserves.

        Raises:
            InvalidPath, PoolNotFound, InvalidAmount, InsufficientLiquidity,
            SlippageExceeded, PoolPaused
        """
        if request.amount <= 0:
            raise InvalidAmount(f"Amount must be positive, got {request.amount}")
        path = [normalize_token(token) for token in request.path]
        pools = self._resolve_path(path)

        with self.locked(pools):
            if request.kind == SwapKind.EXACT_IN:
                amount_in = request.amount
                net_in, protocol_fee = self.amm.split_fee(amount_in, self.fees.protocol_fee_bps)
                if net_in <= 0:
                    raise InvalidAmount(f"Input {amount_in} is consumed by the protocol fee")
            else:
                hops = [
                    (*pool.reserves_for(pool.direction_for(path[i])), pool.fee_bps)
                    for i, pool in enumerate(pools)
                ]
                net_in = self.amm.get_amounts_in(request.amount, hops)[0]
                amount_in = self._gross_up(net_in)
                protocol_fee = amount_in - net_in
                if amount_in > request.limit:
                    raise SlippageExceeded(
                        f"Required input {amount_in} exceeds maximum {request.limit}"
                    )

            planned: list[SwapHop] = []
            carry = net_in
            for i, pool in enumerate(pools):
                result = pool.preview_swap(carry, 0, pool.direction_for(path[i]))
                planned.append(SwapHop(pool.pool_id, pool.version, result))
                carry = result.amount_out

        if request.kind == SwapKind.EXACT_IN and carry < request.limit:
            raise SlippageExceeded(f"Output {carry} below minimum {request.limit}")
        if request.kind == SwapKind.EXACT_OUT and carry < request.amount:
            raise SlippageExceeded(f"Output {carry} below requested {request.amount}")

        return SwapPlan(
            request=request,
            hops=tuple(planned),
            amount_in=amount_in,
            protocol_fee=protocol_fee,
            amount_out=carry,
        )

    def _gross_up(self, net_in: int) -> int:
        """Smallest gross input whose post-protocol-fee remainder covers net_in."""
        bps = self.fees.protocol_fee_bps
        if bps == 0:
            return net_in
        return (S(net_in) * BPS_DENOMINATOR).ceiling_div(BPS_DENOMINATOR - bps).value

    def commit_swap(self, plan: SwapPlan, exact: bool = False) -> SwapExecution:
        """Commit a swap plan, re-pricing it if any pool moved since planning.

        With `exact`, the plan is never re-priced: its amounts have already
        been transferred, so every hop books them as planned or the commit
        fails with InvariantViolation.
        """
        pools = [self.registry.by_id(hop.pool_id) for hop in plan.hops]
        with self.locked(pools):
            stale = any(pool.version != hop.version for pool, hop in zip(pools, plan.hops, strict=True))
            if stale and not exact:
                logger.info("swap_plan_stale", path=list(plan.request.path))
                plan = self.plan_swap(plan.request)
            with self._atomic(pools):
                results = tuple(
                    pool.apply_swap(hop.result, hop.version, 0, exact=exact)
                    for pool, hop in zip(pools, plan.hops, strict=True)
                )
                for pool in pools:
                    self.registry.save(pool)
                self.protocol_fees.accrue(plan.token_in, plan.protocol_fee)

        logger.info(
            "swap_executed",
            path=list(plan.request.path),
            amount_in=plan.amount_in,
            amount_out=plan.amount_out,
            protocol_fee=plan.protocol_fee,
            to=plan.request.to,
        )
        return SwapExecution(
            path=plan.request.path,
            to=plan.request.to,
            amount_in=plan.amount_in,
            amount_out=plan.amount_out,
            protocol_fee=plan.protocol_fee,
            hops=results,
        )

    def swap_exact_tokens_for_tokens(
        self,
        amount_in: int,
        amount_out_min: int,
        path: Sequence[str],
        to: str,
        deadline: int,
    ) -> SwapExecution:
        """Swap an exact input along `path` for at least `amount_out_min`.

        Raises:
            Expired: If the deadline has passed (nothing is executed)
            SlippageExceeded: If the output would be below amount_out_min
        """
        self.ensure_not_expired(deadline)
        request = SwapRequest(SwapKind.EXACT_IN, amount_in, amount_out_min, tuple(path), to, deadline)
        return self._execute_swap(request)

    def swap_tokens_for_exact_tokens(
        self,
        amount_out: int,
        amount_in_max: int,
        path: Sequence[str],
        to: str,
        deadline: int,
    ) -> SwapExecution:
        """Swap at most `amount_in_max` along `path` for `amount_out`.

        Raises:
            Expired: If the deadline has passed (nothing is executed)
            SlippageExceeded: If the required input exceeds amount_in_max
        """
        self.ensure_not_expired(deadline)
        request = SwapRequest(SwapKind.EXACT_OUT, amount_out, amount_in_max, tuple(path), to, deadline)
        return self._execute_swap(request)

    def _execute_swap(self, request: SwapRequest) -> SwapExecution:
        pools = self._resolve_path([normalize_token(t) for t in request.path])
        with self.locked(pools):
            return self.commit_swap(self.plan_swap(request))

    def calldata_for_swap(self, request: SwapRequest) -> tuple[str, str]:
        """Router calldata for executing the same swap on an EVM chain.

        Raises:
            InvalidToken: If the path or recipient are not EVM addresses
        """
        path = [normalize_token(token) for token in request.path]
        if request.kind == SwapKind.EXACT_IN:
            return self.amm.encode_swap(
                request.amount, request.limit, path, request.to.lower(), request.deadline
            )
        return self.amm.encode_swap_exact_output(
            request.amount, request.limit, path, request.to.lower(), request.deadline
        )

    # --- Liquidity -----------------------------------------------------------

    def plan_add_liquidity(self, request: AddLiquidityRequest) -> LiquidityPlan:
        """Price a deposit, creating the pool if the pair has none yet.

        Raises:
            InvalidAmount, SlippageExceeded, InsufficientInitialLiquidity,
            InsufficientLiquidityMinted, PoolPaused
        """
        pool = self.registry.get_or_create(request.token_a, request.token_b)
        flipped = normalize_token(request.token_a) != pool.token_a
        desired_a, desired_b = request.amount_a_desired, request.amount_b_desired
        min_a, min_b = request.amount_a_min, request.amount_b_min
        if flipped:
            desired_a, desired_b, min_a, min_b = desired_b, desired_a, min_b, min_a

        with pool.lock:
            result = pool.preview_mint(desired_a, desired_b, min_a, min_b)
            return LiquidityPlan(request, pool.pool_id, pool.version, result, flipped)

    def plan_remove_liquidity(self, request: RemoveLiquidityRequest) -> LiquidityPlan:
        """Price a withdrawal of `request.liquidity` shares.

        Raises:
            PoolNotFound, InsufficientShares, InsufficientLiquidityBurned,
            SlippageExceeded, PoolPaused
        """
        pool = self.registry.get(request.token_a, request.token_b)
        flipped = normalize_token(request.token_a) != pool.token_a
        min_a, min_b = request.amount_a_min, request.amount_b_min
        if flipped:
            min_a, min_b = min_b, min_a

        with pool.lock:
            provider_shares = self.ledger.position_of(pool.pool_id, request.provider)
            result = pool.preview_burn(request.liquidity, provider_shares, min_a, min_b)
            return LiquidityPlan(request, pool.pool_id, pool.version, result, flipped)

    def commit_liquidity(self, plan: LiquidityPlan, exact: bool = False) -> LiquidityExecution:
        """Commit a deposit or withdrawal plan together with the position change.

        `exact` books the planned amounts and shares without re-pricing, as
        for swaps.
        """
        pool = self.registry.by_id(plan.pool_id)
        with pool.lock:
            if pool.version != plan.version and not exact:
                logger.info("liquidity_plan_stale", pool=pool.pool_id)
                plan = (
                    self.plan_add_liquidity(plan.request)
                    if isinstance(plan.request, AddLiquidityRequest)
                    else self.plan_remove_liquidity(plan.request)
                )
            with self._atomic([pool]):
                if isinstance(plan.result, MintResult):
                    execution = self._commit_mint(pool, plan, plan.result, exact)
                else:
                    execution = self._commit_burn(pool, plan, plan.result, exact)
                self.registry.save(pool)
        return execution

    def _commit_mint(
        self,
        pool: AmmPool,
        plan: LiquidityPlan,
        planned: MintResult,
        exact: bool,
    ) -> LiquidityExecution:
        result = pool.apply_mint(planned, plan.version, exact=exact)
        self.ledger.credit(pool.pool_id, plan.request.to, result.shares)
        if result.locked_shares:
            self.ledger.credit(pool.pool_id, LOCKED_PROVIDER, result.locked_shares)
        logger.info(
            "liquidity_added",
            pool=pool.pool_id,
            provider=plan.request.to,
            amount_a=result.amount_a,
            amount_b=result.amount_b,
            shares=result.shares,
        )
        return LiquidityExecution(
            pool_id=pool.pool_id,
            to=plan.request.to,
            amount_a=plan.amount_a,
            amount_b=plan.amount_b,
            shares=result.shares,
            locked_shares=result.locked_shares,
        )

    def _commit_burn(
        self,
        pool: AmmPool,
        plan: LiquidityPlan,
        planned: BurnResult,
        exact: bool,
    ) -> LiquidityExecution:
        assert isinstance(plan.request, RemoveLiquidityRequest)
        provider = plan.request.provider
        provider_shares = self.ledger.position_of(pool.pool_id, provider)
        result = pool.apply_burn(planned, plan.version, provider_shares, exact=exact)
        self.ledger.debit(pool.pool_id, provider, result.shares)
        logger.info(
            "liquidity_removed",
            pool=pool.pool_id,
            provider=provider,
            to=plan.request.to,
            amount_a=result.amount_a,
            amount_b=result.amount_b,
            shares=result.shares,
        )
        return LiquidityExecution(
            pool_id=pool.pool_id,
            to=plan.request.to,
            amount_a=plan.amount_a,
            amount_b=plan.amount_b,
            shares=result.shares,
        )

    def add_liquidity(
        self,
        token_a: str,
        token_b: str,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int,
        amount_b_min: int,
        to: str,
        deadline: int,
    ) -> LiquidityExecution:
        """Deposit into the pair's pool (created on first use) and credit `to`.

        Raises:
            Expired: If the deadline has passed (nothing is executed)
        """
        self.ensure_not_expired(deadline)
        request = AddLiquidityRequest(
            token_a, token_b, amount_a_desired, amount_b_desired, amount_a_min, amount_b_min, to, deadline
        )
        pool = self.registry.get_or_create(token_a, token_b)
        with pool.lock:
            return self.commit_liquidity(self.plan_add_liquidity(request))

    def remove_liquidity(
        self,
        token_a: str,
        token_b: str,
        liquidity: int,
        amount_a_min: int,
        amount_b_min: int,
        to: str,
        deadline: int,
        provider: str | None = None,
    ) -> LiquidityExecution:
        """Burn `liquidity` shares of `provider` (default `to`) and pay out to `to`.

        Raises:
            Expired: If the deadline has passed (nothing is executed)
        """
        self.ensure_not_expired(deadline)
        request = RemoveLiquidityRequest(
            token_a, token_b, liquidity, amount_a_min, amount_b_min, to, deadline, provider or to
        )
        pool = self.registry.get(token_a, token_b)
        with pool.lock:
            return self.commit_liquidity(self.plan_remove_liquidity(request))


__all__ = ["Router", "ProtocolFeeLedger"]
