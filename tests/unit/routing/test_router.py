"""Tests for the swap and liquidity router."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from dexengine.amm.constant_product import constant_product
from dexengine.constants import LOCKED_PROVIDER
from dexengine.errors import (
    Expired,
    InsufficientInitialLiquidity,
    InsufficientShares,
    InvalidAmount,
    InvalidPath,
    InvariantViolation,
    PoolNotFound,
    PoolPaused,
    SlippageExceeded,
)
from dexengine.routing.types import SwapKind, SwapRequest
from tests.helpers import ALICE, BOB, DAI, DEADLINE, USDC, WETH, Stack, make_stack, seed_pool


@pytest.fixture
def seeded(stack: Stack) -> Stack:
    """Parametrized-store stack with USDC/WETH at (1_000_000, 4_000_000)."""
    seed_pool(stack.router, USDC, WETH, 1_000_000, 4_000_000)
    return stack


class TestSwapExactIn:
    """Tests for swap_exact_tokens_for_tokens."""

    def test_single_hop(self, seeded: Stack):
        """Protocol fee comes off first, then the 25 bps LP fee inside the pool."""
        execution = seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH], BOB, DEADLINE)

        assert execution.amount_in == 10_000
        assert execution.protocol_fee == 5
        assert execution.amount_out == 39486
        pool = seeded.registry.get(USDC, WETH)
        assert (pool.reserve_a, pool.reserve_b) == (1_009_995, 3_960_514)
        assert seeded.router.protocol_fees.accrued(USDC) == 5

    def test_protocol_fee_accrual_is_persisted(self, seeded: Stack):
        seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH], BOB, DEADLINE)
        seeded.router.swap_exact_tokens_for_tokens(40_000, 0, [WETH, USDC], BOB, DEADLINE)

        restarted = make_stack(seeded.store)
        assert restarted.router.protocol_fees.balances() == {USDC: 5, WETH: 20}

    def test_reserves_are_persisted(self, seeded: Stack):
        seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH], BOB, DEADLINE)
        pool = seeded.registry.get(USDC, WETH)
        record = seeded.store.get_pool(pool.pool_id)
        assert (record.reserve_a, record.reserve_b) == (1_009_995, 3_960_514)

    def test_reverse_direction(self, seeded: Stack):
        execution = seeded.router.swap_exact_tokens_for_tokens(40_000, 0, [WETH, USDC], BOB, DEADLINE)
        expected = constant_product.quote_out(39_980, 4_000_000, 1_000_000, 25)
        assert execution.protocol_fee == 20
        assert execution.amount_out == expected

    def test_slippage_guard(self, seeded: Stack):
        with pytest.raises(SlippageExceeded):
            seeded.router.swap_exact_tokens_for_tokens(10_000, 39_487, [USDC, WETH], BOB, DEADLINE)
        pool = seeded.registry.get(USDC, WETH)
        assert (pool.reserve_a, pool.reserve_b) == (1_000_000, 4_000_000)
        assert seeded.router.protocol_fees.accrued(USDC) == 0

    def test_multi_hop(self, seeded: Stack):
        seed_pool(seeded.router, WETH, DAI, 4_000_000, 2_000_000)

        execution = seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH, DAI], BOB, DEADLINE)

        assert len(execution.hops) == 2
        assert execution.hops[0].amount_out == 39486
        assert execution.hops[1].amount_in == 39486
        assert execution.amount_out == constant_product.quote_out(39486, 4_000_000, 2_000_000, 25)
        weth_dai = seeded.registry.get(WETH, DAI)
        assert weth_dai.reserve_b == 4_039_486

    def test_zero_amount(self, seeded: Stack):
        with pytest.raises(InvalidAmount):
            seeded.router.swap_exact_tokens_for_tokens(0, 0, [USDC, WETH], BOB, DEADLINE)


class TestSwapExactOut:
    """Tests for swap_tokens_for_exact_tokens."""

    def test_single_hop(self, seeded: Stack):
        execution = seeded.router.swap_tokens_for_exact_tokens(39486, 10_000, [USDC, WETH], BOB, DEADLINE)
        assert execution.amount_in == 10_000
        assert execution.protocol_fee == 5
        assert execution.amount_out >= 39486

    def test_max_input_guard(self, seeded: Stack):
        with pytest.raises(SlippageExceeded):
            seeded.router.swap_tokens_for_exact_tokens(39486, 9_999, [USDC, WETH], BOB, DEADLINE)
        assert seeded.registry.get(USDC, WETH).version == 1

    def test_multi_hop_delivers_requested_amount(self, seeded: Stack):
        seed_pool(seeded.router, WETH, DAI, 4_000_000, 2_000_000)
        execution = seeded.router.swap_tokens_for_exact_tokens(5_000, 10**9, [USDC, WETH, DAI], BOB, DEADLINE)
        assert execution.amount_out >= 5_000
        assert execution.amount_in > 5_000 // 2

    def test_without_protocol_fee(self):
        stack = make_stack(protocol_fee_bps=0)
        seed_pool(stack.router, USDC, WETH, 1_000_000, 4_000_000)
        execution = stack.router.swap_tokens_for_exact_tokens(39486, 10**9, [USDC, WETH], BOB, DEADLINE)
        assert execution.protocol_fee == 0
        assert execution.amount_in == constant_product.quote_in(39486, 1_000_000, 4_000_000, 25)


class TestGuards:
    """Deadline and path checks happen before any state changes."""

    def test_expired_deadline(self, seeded: Stack, clock):
        with pytest.raises(Expired):
            seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH], BOB, int(clock.now) - 1)
        with pytest.raises(Expired):
            seeded.router.add_liquidity(USDC, WETH, 1, 1, 0, 0, BOB, int(clock.now) - 1)
        assert seeded.registry.get(USDC, WETH).version == 1

    def test_deadline_equal_to_now_is_accepted(self, seeded: Stack, clock):
        execution = seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH], BOB, int(clock.now))
        assert execution.amount_out == 39486

    def test_short_path(self, seeded: Stack):
        with pytest.raises(InvalidPath):
            seeded.router.swap_exact_tokens_for_tokens(10, 0, [USDC], BOB, DEADLINE)

    def test_path_revisiting_pool(self, seeded: Stack):
        with pytest.raises(InvalidPath):
            seeded.router.swap_exact_tokens_for_tokens(10, 0, [USDC, WETH, USDC], BOB, DEADLINE)

    def test_unknown_pair(self, seeded: Stack):
        with pytest.raises(PoolNotFound):
            seeded.router.swap_exact_tokens_for_tokens(10, 0, [USDC, DAI], BOB, DEADLINE)

    def test_paused_pool(self, seeded: Stack):
        seeded.registry.pause(seeded.registry.get(USDC, WETH).pool_id)
        with pytest.raises(PoolPaused):
            seeded.router.swap_exact_tokens_for_tokens(10_000, 0, [USDC, WETH], BOB, DEADLINE)


class TestAddLiquidity:
    def test_first_deposit_creates_pool_and_locks_shares(self, stack: Stack):
        execution = seed_pool(stack.router, USDC, WETH, 1_000_000, 4_000_000)

        pool = stack.registry.get(USDC, WETH)
        assert execution.shares == 1_999_000
        assert execution.locked_shares == 1_000
        assert stack.positions.position_of(pool.pool_id, ALICE) == 1_999_000
        assert stack.positions.position_of(pool.pool_id, LOCKED_PROVIDER) == 1_000

    def test_amounts_follow_caller_order(self, seeded: Stack):
        """Passing (WETH, USDC) returns amounts as (WETH, USDC)."""
        execution = seeded.router.add_liquidity(WETH, USDC, 4_000, 1_000, 0, 0, BOB, DEADLINE)
        assert (execution.amount_a, execution.amount_b) == (4_000, 1_000)
        assert execution.shares == 2_000

    def test_ratio_is_enforced(self, seeded: Stack):
        execution = seeded.router.add_liquidity(USDC, WETH, 1_000, 10_000, 0, 0, BOB, DEADLINE)
        assert (execution.amount_a, execution.amount_b) == (1_000, 4_000)

    def test_minimums(self, seeded: Stack):
        with pytest.raises(SlippageExceeded):
            seeded.router.add_liquidity(USDC, WETH, 1_000, 3_000, 900, 0, BOB, DEADLINE)

    def test_insufficient_first_deposit_keeps_empty_pool(self, stack: Stack):
        with pytest.raises(InsufficientInitialLiquidity):
            stack.router.add_liquidity(USDC, WETH, 1_000, 1_000, 0, 0, ALICE, DEADLINE)
        pool = stack.registry.get(USDC, WETH)
        assert (pool.reserve_a, pool.reserve_b, pool.total_shares) == (0, 0, 0)

    def test_positions_sum_to_total_shares(self, seeded: Stack):
        seeded.router.add_liquidity(USDC, WETH, 1_000, 4_000, 0, 0, BOB, DEADLINE)
        seeded.router.swap_exact_tokens_for_tokens(50_000, 0, [USDC, WETH], BOB, DEADLINE)
        seeded.router.add_liquidity(WETH, USDC, 9_000, 9_000, 0, 0, BOB, DEADLINE)

        pool = seeded.registry.get(USDC, WETH)
        assert seeded.positions.total(pool.pool_id) == pool.total_shares

    def test_failed_commit_restores_pool(self, seeded: Stack, monkeypatch):
        pool = seeded.registry.get(USDC, WETH)
        before = pool.state

        def fail(*args, **kwargs):
            raise RuntimeError("position write failed")

        monkeypatch.setattr(seeded.positions, "credit", fail)
        with pytest.raises(RuntimeError):
            seeded.router.add_liquidity(USDC, WETH, 1_000, 4_000, 0, 0, BOB, DEADLINE)

        assert pool.state == before
        assert seeded.store.get_pool(pool.pool_id).total_shares == 2_000_000


class TestRemoveLiquidity:
    def test_remove_all_provider_shares(self, seeded: Stack):
        execution = seeded.router.remove_liquidity(USDC, WETH, 1_999_000, 0, 0, ALICE, DEADLINE)

        assert (execution.amount_a, execution.amount_b) == (999_500, 3_998_000)
        pool = seeded.registry.get(USDC, WETH)
        assert pool.total_shares == 1_000
        assert (pool.reserve_a, pool.reserve_b) == (500, 2_000)
        assert seeded.positions.position_of(pool.pool_id, ALICE) == 0

    def test_provider_and_recipient_differ(self, seeded: Stack):
        execution = seeded.router.remove_liquidity(
            WETH, USDC, 2_000, 0, 0, BOB, DEADLINE, provider=ALICE
        )
        assert execution.to == BOB
        assert (execution.amount_a, execution.amount_b) == (4_000, 1_000)
        pool = seeded.registry.get(USDC, WETH)
        assert seeded.positions.position_of(pool.pool_id, ALICE) == 1_997_000

    def test_cannot_burn_others_shares(self, seeded: Stack):
        with pytest.raises(InsufficientShares):
            seeded.router.remove_liquidity(USDC, WETH, 1, 0, 0, BOB, DEADLINE)

    def test_minimums(self, seeded: Stack):
        with pytest.raises(SlippageExceeded):
            seeded.router.remove_liquidity(USDC, WETH, 2_000, 1_001, 0, ALICE, DEADLINE)

    def test_unknown_pool(self, stack: Stack):
        with pytest.raises(PoolNotFound):
            stack.router.remove_liquidity(USDC, WETH, 1, 0, 0, ALICE, DEADLINE)


class TestPlanCommit:
    """Plans computed at one version are re-priced when committed later."""

    def test_stale_swap_plan_is_repriced(self, memory_stack: Stack):
        seed_pool(memory_stack.router, USDC, WETH, 1_000_000, 4_000_000)
        request = SwapRequest(SwapKind.EXACT_IN, 10_000, 0, (USDC, WETH), BOB, DEADLINE)
        plan = memory_stack.router.plan_swap(request)

        memory_stack.router.swap_exact_tokens_for_tokens(100_000, 0, [USDC, WETH], ALICE, DEADLINE)
        execution = memory_stack.router.commit_swap(plan)

        assert execution.amount_out < plan.amount_out

    def test_stale_plan_still_honours_minimum(self, memory_stack: Stack):
        seed_pool(memory_stack.router, USDC, WETH, 1_000_000, 4_000_000)
        request = SwapRequest(SwapKind.EXACT_IN, 10_000, 39_486, (USDC, WETH), BOB, DEADLINE)
        plan = memory_stack.router.plan_swap(request)

        memory_stack.router.swap_exact_tokens_for_tokens(100_000, 0, [USDC, WETH], ALICE, DEADLINE)
        with pytest.raises(SlippageExceeded):
            memory_stack.router.commit_swap(plan)

    def test_exact_commit_books_planned_amounts(self, memory_stack: Stack):
        """A stale plan committed with exact=True keeps its amounts when k still holds."""
        seed_pool(memory_stack.router, USDC, WETH, 1_000_000, 4_000_000)
        plan = memory_stack.router.plan_swap(
            SwapRequest(SwapKind.EXACT_IN, 10_000, 0, (USDC, WETH), BOB, DEADLINE)
        )
        memory_stack.router.swap_exact_tokens_for_tokens(40_000, 0, [WETH, USDC], ALICE, DEADLINE)
        pool = memory_stack.registry.get(USDC, WETH)
        moved = pool.state

        execution = memory_stack.router.commit_swap(plan, exact=True)

        assert execution.amount_out == plan.amount_out == 39486
        assert (pool.reserve_a, pool.reserve_b) == (moved.reserve_a + 9_995, moved.reserve_b - 39486)
        assert memory_stack.router.protocol_fees.accrued(USDC) == 5

    def test_exact_commit_refuses_output_the_pool_no_longer_backs(self, memory_stack: Stack):
        seed_pool(memory_stack.router, USDC, WETH, 1_000_000, 4_000_000)
        plan = memory_stack.router.plan_swap(
            SwapRequest(SwapKind.EXACT_IN, 10_000, 0, (USDC, WETH), BOB, DEADLINE)
        )
        memory_stack.router.swap_exact_tokens_for_tokens(50_000, 0, [USDC, WETH], ALICE, DEADLINE)
        pool = memory_stack.registry.get(USDC, WETH)
        moved = pool.state

        with pytest.raises(InvariantViolation):
            memory_stack.router.commit_swap(plan, exact=True)

        assert pool.state == moved
        assert memory_stack.store.get_pool(pool.pool_id).reserve_a == moved.reserve_a
        assert memory_stack.router.protocol_fees.accrued(USDC) == 25

    def test_concurrent_swaps_are_serialized(self, seeded_stack: Stack):
        router = seeded_stack.router

        def swap(_: int):
            return router.swap_exact_tokens_for_tokens(1_000, 0, [USDC, WETH], BOB, DEADLINE)

        with ThreadPoolExecutor(max_workers=8) as executor:
            executions = list(executor.map(swap, range(40)))

        pool = seeded_stack.registry.get(USDC, WETH)
        assert pool.reserve_a == 1_000_000 + 40 * 1_000
        assert pool.reserve_b == 4_000_000 - sum(e.amount_out for e in executions)
        assert pool.version == 41


class TestCalldata:
    def test_exact_in_calldata(self, seeded: Stack):
        request = SwapRequest(SwapKind.EXACT_IN, 10_000, 39_000, (USDC, WETH), ALICE, DEADLINE)
        target, calldata = seeded.router.calldata_for_swap(request)
        assert target.startswith("0x")
        assert calldata.startswith("0x38ed1739")

    def test_exact_out_calldata(self, seeded: Stack):
        request = SwapRequest(SwapKind.EXACT_OUT, 39_486, 10_000, (USDC, WETH), ALICE, DEADLINE)
        _, calldata = seeded.router.calldata_for_swap(request)
        assert calldata.startswith("0x8803dbee")
