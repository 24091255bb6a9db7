"""Stateful constant-product pool.

One AmmPool per canonical token pair. The pool owns its reserves and share
supply; every mutation goes through swap/mint/burn (or the apply_* variants
used to commit a plan computed earlier) and is checked against the
constant-product invariant before anything is written.

Mutations must be serialized per pool. Callers hold `pool.lock` for the whole
read-compute-write sequence; the lock is reentrant so the pool's own methods
can take it as well.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

import structlog

from dexengine.amm.base import (
    BurnResult,
    Direction,
    MintResult,
    PoolEvent,
    PoolEventKind,
    SwapResult,
)
from dexengine.amm.constant_product import ConstantProductAMM, constant_product
from dexengine.constants import BPS_DENOMINATOR, DEFAULT_LP_FEE_BPS
from dexengine.errors import (
    InsufficientLiquidityBurned,
    InsufficientLiquidityMinted,
    InsufficientShares,
    InvalidAmount,
    InvalidToken,
    InvariantViolation,
    PoolPaused,
    ReserveOverflow,
    SlippageExceeded,
)
from dexengine.models.records import PoolRecord
from dexengine.models.types import canonical_pair, normalize_token, pair_key
from dexengine.safe_int import S, Uint112Overflow

logger = structlog.get_logger()

PoolListener = Callable[[PoolEvent], None]


@dataclass(frozen=True)
class PoolState:
    """Point-in-time view of a pool's mutable fields."""

    reserve_a: int
    reserve_b: int
    total_shares: int
    version: int


class AmmPool:
    """Constant-product pool over a canonically ordered token pair.

    Attributes:
        pool_id: Deterministic pool identifier
        token_a: Lower token of the canonical pair
        token_b: Higher token of the canonical pair
        fee_bps: LP fee retained in reserves on every swap
        version: Incremented on every committed mutation
    """

    def __init__(
        self,
        pool_id: str,
        token_a: str,
        token_b: str,
        fee_bps: int = DEFAULT_LP_FEE_BPS,
        reserve_a: int = 0,
        reserve_b: int = 0,
        total_shares: int = 0,
        active: bool = True,
        created_at: datetime | None = None,
        amm: ConstantProductAMM | None = None,
    ) -> None:
        token_a, token_b = canonical_pair(token_a, token_b)
        if not 0 <= fee_bps < BPS_DENOMINATOR:
            raise ValueError(f"fee_bps must be in [0, {BPS_DENOMINATOR}), got {fee_bps}")
        self.pool_id = pool_id
        self.token_a = token_a
        self.token_b = token_b
        self.fee_bps = fee_bps
        self.reserve_a = reserve_a
        self.reserve_b = reserve_b
        self.total_shares = total_shares
        self.active = active
        self.created_at = created_at
        self.pair_key = pair_key(token_a, token_b)
        self.version = 0
        self.amm = amm or constant_product
        self.lock = threading.RLock()
        self._listeners: list[PoolListener] = []

    def __repr__(self) -> str:
        return (
            f"AmmPool({self.pool_id[-8:]}, {self.token_a}/{self.token_b}, "
            f"reserves=({self.reserve_a}, {self.reserve_b}), shares={self.total_shares})"
        )

    @classmethod
    def from_record(cls, record: PoolRecord, amm: ConstantProductAMM | None = None) -> AmmPool:
        return cls(
            pool_id=record.pool_id,
            token_a=record.token_a,
            token_b=record.token_b,
            fee_bps=record.fee_bps,
            reserve_a=record.reserve_a,
            reserve_b=record.reserve_b,
            total_shares=record.total_shares,
            active=record.active,
            created_at=record.created_at,
            amm=amm,
        )

    def to_record(self) -> PoolRecord:
        return PoolRecord(
            pool_id=self.pool_id,
            token_a=self.token_a,
            token_b=self.token_b,
            pair_key=self.pair_key,
            fee_bps=self.fee_bps,
            reserve_a=self.reserve_a,
            reserve_b=self.reserve_b,
            total_shares=self.total_shares,
            active=self.active,
            created_at=self.created_at,
        )

    @property
    def state(self) -> PoolState:
        return PoolState(self.reserve_a, self.reserve_b, self.total_shares, self.version)

    @property
    def has_liquidity(self) -> bool:
        return self.reserve_a > 0 and self.reserve_b > 0

    def restore(self, state: PoolState) -> None:
        """Roll the pool back to a previously captured state."""
        with self.lock:
            self.reserve_a = state.reserve_a
            self.reserve_b = state.reserve_b
            self.total_shares = state.total_shares
            self.version = state.version
            self._sync()

    # --- Events --------------------------------------------------------------

    def subscribe(self, listener: PoolListener) -> None:
        self._listeners.append(listener)

    def _emit(self, kind: PoolEventKind, **data: object) -> None:
        event = PoolEvent(kind=kind, pool_id=self.pool_id, data=dict(data))
        for listener in self._listeners:
            listener(event)

    def _sync(self) -> None:
        self._emit(
            PoolEventKind.SYNC,
            reserve_a=self.reserve_a,
            reserve_b=self.reserve_b,
            total_shares=self.total_shares,
        )

    # --- Direction helpers ---------------------------------------------------

    def direction_for(self, token_in: str) -> Direction:
        """Swap direction for an input token.

        Raises:
            InvalidToken: If the token is not part of this pool
        """
        token = normalize_token(token_in)
        if token == self.token_a:
            return Direction.A_TO_B
        if token == self.token_b:
            return Direction.B_TO_A
        raise InvalidToken(f"Token {token_in} is not in pool {self.pool_id}")

    def other_token(self, token: str) -> str:
        return self.token_b if self.direction_for(token) == Direction.A_TO_B else self.token_a

    def reserves_for(self, direction: Direction) -> tuple[int, int]:
        """(reserve_in, reserve_out) for a direction."""
        if direction == Direction.A_TO_B:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a

    def quote_out(self, amount_in: int, token_in: str) -> int:
        reserve_in, reserve_out = self.reserves_for(self.direction_for(token_in))
        return self.amm.quote_out(amount_in, reserve_in, reserve_out, self.fee_bps)

    def quote_in(self, amount_out: int, token_in: str) -> int:
        reserve_in, reserve_out = self.reserves_for(self.direction_for(token_in))
        return self.amm.quote_in(amount_out, reserve_in, reserve_out, self.fee_bps)

    # --- Administration ------------------------------------------------------

    def pause(self) -> None:
        with self.lock:
            self.active = False
        logger.info("pool_paused", pool=self.pool_id)

    def resume(self) -> None:
        with self.lock:
            self.active = True
        logger.info("pool_resumed", pool=self.pool_id)

    def _require_active(self) -> None:
        if not self.active:
            raise PoolPaused(f"Pool {self.pool_id} is paused")

    # --- Swap ----------------------------------------------------------------

    def preview_swap(
        self,
        amount_in: int,
        min_amount_out: int,
        direction: Direction,
        received: int | None = None,
    ) -> SwapResult:
        """Compute a swap against current reserves without committing it.

        Args:
            amount_in: Stated input amount
            min_amount_out: Slippage bound
            direction: A_TO_B or B_TO_A
            received: Balance delta the pool actually received. Defaults to
                amount_in; smaller for fee-on-transfer tokens.

        Raises:
            PoolPaused, InvalidAmount, InsufficientLiquidity, SlippageExceeded,
            InvariantViolation, ReserveOverflow
        """
        self._require_active()
        actual_in = amount_in if received is None else received
        if actual_in <= 0:
            raise InvalidAmount(f"Amount in must be positive, got {actual_in}")

        reserve_in, reserve_out = self.reserves_for(direction)
        amount_out = self.amm.quote_out(actual_in, reserve_in, reserve_out, self.fee_bps)
        if amount_out < min_amount_out:
            raise SlippageExceeded(
                f"Output {amount_out} below minimum {min_amount_out}"
            )

        new_in = S(reserve_in) + actual_in
        new_out = S(reserve_out) - amount_out
        self._check_k(reserve_in, reserve_out, new_in.value, new_out.value, actual_in)
        new_in_value, new_out_value = self._bounded(new_in.value, new_out.value)

        if direction == Direction.A_TO_B:
            token_in, token_out = self.token_a, self.token_b
            reserve_a, reserve_b = new_in_value, new_out_value
        else:
            token_in, token_out = self.token_b, self.token_a
            reserve_a, reserve_b = new_out_value, new_in_value

        _, fee = self.amm.split_fee(actual_in, self.fee_bps)
        return SwapResult(
            pool_id=self.pool_id,
            token_in=token_in,
            token_out=token_out,
            amount_in=actual_in,
            amount_out=amount_out,
            fee_amount=fee,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
        )

    def swap(
        self,
        amount_in: int,
        min_amount_out: int,
        direction: Direction,
        received: int | None = None,
    ) -> SwapResult:
        """Swap an exact input and commit the new reserves."""
        with self.lock:
            result = self.preview_swap(amount_in, min_amount_out, direction, received)
            self._commit_swap(result)
            return result

    def apply_swap(
        self,
        planned: SwapResult,
        expected_version: int,
        min_amount_out: int,
        exact: bool = False,
    ) -> SwapResult:
        """Commit a swap planned at `expected_version`.

        If the pool moved since the plan was computed, the swap is recomputed
        from the planned input against current reserves and must still clear
        `min_amount_out`. With `exact`, the planned amounts are booked as they
        are instead, because they were already transferred.

        Raises:
            InvariantViolation: If `exact` and current reserves cannot absorb
                the planned amounts without decreasing k
        """
        with self.lock:
            if self.version == expected_version:
                self._require_active()
                self._commit_swap(planned)
                return planned
            logger.info(
                "swap_plan_stale",
                pool=self.pool_id,
                planned_version=expected_version,
                version=self.version,
                exact=exact,
            )
            if exact:
                return self._book_swap(planned)
            direction = self.direction_for(planned.token_in)
            return self.swap(planned.amount_in, min_amount_out, direction)

    def _book_swap(self, planned: SwapResult) -> SwapResult:
        self._require_active()
        direction = self.direction_for(planned.token_in)
        reserve_in, reserve_out = self.reserves_for(direction)
        if planned.amount_out >= reserve_out:
            raise InvariantViolation(
                f"Planned output {planned.amount_out} exceeds reserve {reserve_out} in pool {self.pool_id}"
            )
        new_in = reserve_in + planned.amount_in
        new_out = reserve_out - planned.amount_out
        self._check_k(reserve_in, reserve_out, new_in, new_out, planned.amount_in)
        new_in, new_out = self._bounded(new_in, new_out)
        if direction == Direction.A_TO_B:
            result = replace(planned, reserve_a=new_in, reserve_b=new_out)
        else:
            result = replace(planned, reserve_a=new_out, reserve_b=new_in)
        self._commit_swap(result)
        return result

    def _commit_swap(self, result: SwapResult) -> None:
        self.reserve_a = result.reserve_a
        self.reserve_b = result.reserve_b
        self.version += 1
        self._sync()
        logger.debug(
            "swap_committed",
            pool=self.pool_id,
            token_in=result.token_in,
            amount_in=result.amount_in,
            amount_out=result.amount_out,
            fee=result.fee_amount,
        )
        self._emit(
            PoolEventKind.SWAP,
            token_in=result.token_in,
            token_out=result.token_out,
            amount_in=result.amount_in,
            amount_out=result.amount_out,
            reserve_a=result.reserve_a,
            reserve_b=result.reserve_b,
        )

    def _check_k(
        self,
        reserve_in: int,
        reserve_out: int,
        new_in: int,
        new_out: int,
        actual_in: int,
    ) -> None:
        """Fee-scaled invariant: adjusted_in * adjusted_out >= k * 10000^2.

        The fee portion of the input is excluded from the post-swap balance so
        that the fee-free product still does not decrease.
        """
        adjusted_in = S(new_in) * BPS_DENOMINATOR - S(actual_in) * self.fee_bps
        adjusted_out = S(new_out) * BPS_DENOMINATOR
        k_before = S(reserve_in) * S(reserve_out) * (BPS_DENOMINATOR * BPS_DENOMINATOR)
        if adjusted_in * adjusted_out < k_before:
            logger.error(
                "invariant_violation",
                pool=self.pool_id,
                reserve_in=reserve_in,
                reserve_out=reserve_out,
                new_in=new_in,
                new_out=new_out,
            )
            raise InvariantViolation(f"Constant product decreased in pool {self.pool_id}")

    def _bounded(self, reserve_x: int, reserve_y: int) -> tuple[int, int]:
        try:
            return S(reserve_x).to_uint112(), S(reserve_y).to_uint112()
        except Uint112Overflow as e:
            raise ReserveOverflow(str(e)) from e

    # --- Mint ----------------------------------------------------------------

    def preview_mint(
        self,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
    ) -> MintResult:
        """Compute a deposit against current reserves without committing it.

        Raises:
            PoolPaused, InvalidAmount, SlippageExceeded,
            InsufficientInitialLiquidity, InsufficientLiquidityMinted,
            ReserveOverflow
        """
        self._require_active()
        if amount_a_desired < 0 or amount_b_desired < 0:
            raise InvalidAmount("Deposit amounts cannot be negative")

        if self.total_shares == 0:
            amount_a, amount_b = amount_a_desired, amount_b_desired
        else:
            if amount_a_desired == 0 or amount_b_desired == 0:
                raise InvalidAmount("Both deposit amounts must be positive")
            amount_a, amount_b = self.amm.optimal_amounts(
                amount_a_desired,
                amount_b_desired,
                amount_a_min,
                amount_b_min,
                self.reserve_a,
                self.reserve_b,
            )

        shares, locked = self.amm.shares_for_deposit(
            amount_a, amount_b, self.reserve_a, self.reserve_b, self.total_shares
        )
        if shares <= 0:
            raise InsufficientLiquidityMinted(
                f"Deposit of ({amount_a}, {amount_b}) mints no shares"
            )

        reserve_a, reserve_b = self._bounded(self.reserve_a + amount_a, self.reserve_b + amount_b)
        return MintResult(
            pool_id=self.pool_id,
            amount_a=amount_a,
            amount_b=amount_b,
            shares=shares,
            locked_shares=locked,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            total_shares=self.total_shares + shares + locked,
        )

    def mint(
        self,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
    ) -> MintResult:
        """Deposit liquidity and commit the new reserves and share supply."""
        with self.lock:
            result = self.preview_mint(amount_a_desired, amount_b_desired, amount_a_min, amount_b_min)
            self._commit_mint(result)
            return result

    def apply_mint(
        self,
        planned: MintResult,
        expected_version: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
        exact: bool = False,
    ) -> MintResult:
        """Commit a deposit planned at `expected_version`, recomputing if stale.

        With `exact`, a stale plan is booked with its planned amounts and
        shares, provided current reserves still back at least that many shares.
        """
        with self.lock:
            if self.version == expected_version:
                self._require_active()
                self._commit_mint(planned)
                return planned
            logger.info(
                "mint_plan_stale",
                pool=self.pool_id,
                planned_version=expected_version,
                version=self.version,
                exact=exact,
            )
            if exact:
                return self._book_mint(planned)
            return self.mint(planned.amount_a, planned.amount_b, amount_a_min, amount_b_min)

    def _book_mint(self, planned: MintResult) -> MintResult:
        self._require_active()
        shares, locked = self.amm.shares_for_deposit(
            planned.amount_a, planned.amount_b, self.reserve_a, self.reserve_b, self.total_shares
        )
        if planned.locked_shares != locked or planned.shares > shares:
            raise InvariantViolation(
                f"Deposit of ({planned.amount_a}, {planned.amount_b}) backs {shares} shares "
                f"in pool {self.pool_id}, {planned.shares} were issued"
            )
        reserve_a, reserve_b = self._bounded(
            self.reserve_a + planned.amount_a, self.reserve_b + planned.amount_b
        )
        result = replace(
            planned,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            total_shares=self.total_shares + planned.shares + planned.locked_shares,
        )
        self._commit_mint(result)
        return result

    def _commit_mint(self, result: MintResult) -> None:
        self.reserve_a = result.reserve_a
        self.reserve_b = result.reserve_b
        self.total_shares = result.total_shares
        self.version += 1
        self._sync()
        logger.debug(
            "mint_committed",
            pool=self.pool_id,
            amount_a=result.amount_a,
            amount_b=result.amount_b,
            shares=result.shares,
        )
        self._emit(
            PoolEventKind.MINT,
            amount_a=result.amount_a,
            amount_b=result.amount_b,
            shares=result.shares,
            locked_shares=result.locked_shares,
        )

    # --- Burn ----------------------------------------------------------------

    def preview_burn(
        self,
        shares: int,
        provider_shares: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
    ) -> BurnResult:
        """Compute a withdrawal without committing it.

        Raises:
            PoolPaused, InsufficientShares, InsufficientLiquidityBurned,
            SlippageExceeded
        """
        self._require_active()
        if shares <= 0:
            raise InsufficientShares(f"Shares must be positive, got {shares}")
        if shares > provider_shares:
            raise InsufficientShares(f"Burning {shares} shares but position holds {provider_shares}")

        amount_a, amount_b = self.amm.amounts_for_shares(
            shares, self.reserve_a, self.reserve_b, self.total_shares
        )
        if amount_a == 0 or amount_b == 0:
            raise InsufficientLiquidityBurned(f"Burning {shares} shares returns nothing")
        if amount_a < amount_a_min or amount_b < amount_b_min:
            raise SlippageExceeded(
                f"Withdrawal ({amount_a}, {amount_b}) below minimum ({amount_a_min}, {amount_b_min})"
            )

        return BurnResult(
            pool_id=self.pool_id,
            shares=shares,
            amount_a=amount_a,
            amount_b=amount_b,
            reserve_a=(S(self.reserve_a) - amount_a).value,
            reserve_b=(S(self.reserve_b) - amount_b).value,
            total_shares=(S(self.total_shares) - shares).value,
        )

    def burn(
        self,
        shares: int,
        provider_shares: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
    ) -> BurnResult:
        """Redeem shares and commit the new reserves and share supply."""
        with self.lock:
            result = self.preview_burn(shares, provider_shares, amount_a_min, amount_b_min)
            self._commit_burn(result)
            return result

    def apply_burn(
        self,
        planned: BurnResult,
        expected_version: int,
        provider_shares: int,
        amount_a_min: int = 0,
        amount_b_min: int = 0,
        exact: bool = False,
    ) -> BurnResult:
        """Commit a withdrawal planned at `expected_version`, recomputing if stale.

        With `exact`, a stale plan is booked with its planned payout, provided
        the burned shares still redeem at least that much.
        """
        with self.lock:
            if planned.shares > provider_shares:
                raise InsufficientShares(
                    f"Burning {planned.shares} shares but position holds {provider_shares}"
                )
            if self.version == expected_version:
                self._require_active()
                self._commit_burn(planned)
                return planned
            logger.info(
                "burn_plan_stale",
                pool=self.pool_id,
                planned_version=expected_version,
                version=self.version,
                exact=exact,
            )
            if exact:
                return self._book_burn(planned)
            return self.burn(planned.shares, provider_shares, amount_a_min, amount_b_min)

    def _book_burn(self, planned: BurnResult) -> BurnResult:
        self._require_active()
        amount_a, amount_b = self.amm.amounts_for_shares(
            planned.shares, self.reserve_a, self.reserve_b, self.total_shares
        )
        if planned.amount_a > amount_a or planned.amount_b > amount_b:
            raise InvariantViolation(
                f"Burning {planned.shares} shares redeems ({amount_a}, {amount_b}) "
                f"in pool {self.pool_id}, ({planned.amount_a}, {planned.amount_b}) were paid"
            )
        result = replace(
            planned,
            reserve_a=self.reserve_a - planned.amount_a,
            reserve_b=self.reserve_b - planned.amount_b,
            total_shares=self.total_shares - planned.shares,
        )
        self._commit_burn(result)
        return result

    def _commit_burn(self, result: BurnResult) -> None:
        self.reserve_a = result.reserve_a
        self.reserve_b = result.reserve_b
        self.total_shares = result.total_shares
        self.version += 1
        self._sync()
        logger.debug(
            "burn_committed",
            pool=self.pool_id,
            shares=result.shares,
            amount_a=result.amount_a,
            amount_b=result.amount_b,
        )
        self._emit(
            PoolEventKind.BURN,
            shares=result.shares,
            amount_a=result.amount_a,
            amount_b=result.amount_b,
        )


__all__ = ["AmmPool", "PoolState", "PoolListener"]
