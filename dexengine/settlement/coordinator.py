"""Two-phase transaction coordinator.

State machine:

    PENDING_TX1 --(user signs & submits)--> TX1_COMPLETE
    TX1_COMPLETE --(operator settles)-----> TX2_COMPLETE   [terminal]
    TX1_COMPLETE --(settlement fails)-----> TX2_FAILED
    TX2_FAILED --(recovery)---------------> RECOVERED      [terminal]

User funds are always in one of three places: with the user (before TX1),
with the pool account (TX1_COMPLETE, awaiting settlement or refund), or
settled (TX2_COMPLETE). Every record keeps the full original request in
`params`, so a crash between TX1 and TX2 is recovered by replaying
`attempt_tx2`.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from functools import partial
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import structlog

from dexengine.config import RetryPolicy
from dexengine.errors import InvalidTransition, TransactionNotFound
from dexengine.models.transaction import (
    PendingTransaction,
    TransactionState,
    TransactionType,
    can_transition,
)
from dexengine.routing.router import Router
from dexengine.routing.types import (
    AddLiquidityRequest,
    LiquidityExecution,
    LiquidityPlan,
    RemoveLiquidityRequest,
    SwapExecution,
    SwapPlan,
    SwapRequest,
)
from dexengine.settlement.ledger import (
    LedgerClient,
    SettlementInstruction,
    TransferLeg,
    TransferReceipt,
)
from dexengine.settlement.retry import classify_error, retry_with_backoff
from dexengine.storage.base import Store

logger = structlog.get_logger()

Plan = SwapPlan | LiquidityPlan
T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TwoPhaseCoordinator:
    """Sequences user transfer (TX1) and operator settlement (TX2).

    `attempt_tx2` never holds a pool lock across ledger I/O: it prices the
    operation, publishes the settlement with retries, then commits reserves,
    positions and the state change in one unit of work. Settlements touching
    the same pool are serialized, and concurrent attempts on one transaction
    settle it at most once.

    Direct swaps can still move a pool while the ledger call is in flight.
    The commit then books exactly the amounts the ledger moved; if the pool
    can no longer absorb them, the record goes to TX2_FAILED with the
    settlement hash kept.
    """

    def __init__(
        self,
        store: Store,
        router: Router,
        ledger: LedgerClient,
        retry_policy: RetryPolicy | None = None,
        operator_account: str = "operator",
        stuck_after_minutes: int = 5,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.router = router
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy()
        self.operator_account = operator_account
        self.stuck_after_minutes = stuck_after_minutes
        self.clock = clock
        self.sleep = sleep
        self._tx_locks: dict[str, asyncio.Lock] = {}
        self._pool_locks: dict[str, asyncio.Lock] = {}

    # --- Queries -------------------------------------------------------------

    def get(self, tx_id: str) -> PendingTransaction:
        tx = self.store.get_transaction(tx_id)
        if tx is None:
            raise TransactionNotFound(f"Transaction {tx_id} not found")
        return tx

    def list_stuck(self, older_than_minutes: int | None = None) -> list[PendingTransaction]:
        """TX1_COMPLETE records whose settlement never completed."""
        minutes = self.stuck_after_minutes if older_than_minutes is None else older_than_minutes
        cutoff = self.clock() - timedelta(minutes=minutes)
        return self.store.list_transactions(
            TransactionState.TX1_COMPLETE, tx1_completed_by=cutoff
        )

    def list_failed(self) -> list[PendingTransaction]:
        """TX2_FAILED records awaiting manual recovery."""
        return self.store.list_transactions(TransactionState.TX2_FAILED)

    # --- Transitions ---------------------------------------------------------

    def _transition(
        self,
        tx: PendingTransaction,
        target: TransactionState,
        **changes: Any,
    ) -> PendingTransaction:
        if not can_transition(tx.state, target):
            raise InvalidTransition(f"Transaction {tx.id} cannot go from {tx.state.value} to {target.value}")
        updated = tx.evolve(state=target, **changes)
        self.store.update_transaction(updated)
        logger.info(
            "transaction_transition",
            tx_id=tx.id,
            type=tx.type.value,
            from_state=tx.state.value,
            to_state=target.value,
        )
        return updated

    def create(
        self,
        tx_type: TransactionType,
        user_address: str,
        params: dict[str, Any],
    ) -> PendingTransaction:
        """Validate a request and persist it in PENDING_TX1.

        The request is priced once here so that caller mistakes (expired
        deadline, slippage, unknown pool) surface before the user transfers
        anything.
        """
        plan = self._plan(tx_type, params, check_deadline=True)
        pool_id = plan.hops[0].pool_id if isinstance(plan, SwapPlan) else plan.pool_id
        tx = PendingTransaction(
            id=uuid.uuid4().hex,
            type=tx_type,
            user_address=user_address,
            pool_id=pool_id,
            params=dict(params),
            state=TransactionState.PENDING_TX1,
            created_at=self.clock(),
        )
        self.store.insert_transaction(tx)
        logger.info("transaction_created", tx_id=tx.id, type=tx_type.value, pool=pool_id)
        return tx

    def mark_tx1_complete(self, tx_id: str, tx1_hash: str) -> PendingTransaction:
        """Record the user-side transfer."""
        with self.store.unit_of_work():
            tx = self.get(tx_id)
            return self._transition(
                tx,
                TransactionState.TX1_COMPLETE,
                tx1_hash=tx1_hash,
                tx1_completed_at=self.clock(),
            )

    def mark_recovered(self, tx_id: str, recovery_tx_hash: str) -> PendingTransaction:
        """Terminal transition after funds were returned or settled by hand."""
        with self.store.unit_of_work():
            tx = self.get(tx_id)
            return self._transition(
                tx,
                TransactionState.RECOVERED,
                recovery_tx_hash=recovery_tx_hash,
                recovered_at=self.clock(),
            )

    # --- Settlement ----------------------------------------------------------

    def _plan(self, tx_type: TransactionType, params: dict[str, Any], check_deadline: bool = False) -> Plan:
        if tx_type == TransactionType.SWAP:
            swap = SwapRequest.from_params(params)
            if check_deadline:
                self.router.ensure_not_expired(swap.deadline)
            return self.router.plan_swap(swap)
        if tx_type == TransactionType.ADD_LIQUIDITY:
            add = AddLiquidityRequest.from_params(params)
            if check_deadline:
                self.router.ensure_not_expired(add.deadline)
            return self.router.plan_add_liquidity(add)
        remove = RemoveLiquidityRequest.from_params(params)
        if check_deadline:
            self.router.ensure_not_expired(remove.deadline)
        return self.router.plan_remove_liquidity(remove)

    def build_instruction(self, tx: PendingTransaction, plan: Plan) -> SettlementInstruction:
        """Operator-side transfers that complete the user's operation."""
        legs: list[TransferLeg] = []
        if isinstance(plan, SwapPlan):
            # TX1 paid the gross input to the first pool, protocol fee included
            if plan.protocol_fee:
                treasury = self.router.protocol_fees.treasury
                legs.append(TransferLeg(plan.token_in, plan.protocol_fee, plan.hops[0].pool_id, treasury))
            # Intermediate hops forward pool to pool
            for hop, nxt in zip(plan.hops, plan.hops[1:], strict=False):
                legs.append(TransferLeg(hop.result.token_out, hop.result.amount_out, hop.pool_id, nxt.pool_id))
            last = plan.hops[-1]
            legs.append(TransferLeg(plan.token_out, plan.amount_out, last.pool_id, plan.request.to))
        elif isinstance(plan.request, AddLiquidityRequest):
            request = plan.request
            legs.append(TransferLeg(plan.pool_id, plan.result.shares, plan.pool_id, request.to))
            # TX1 transferred the desired amounts; return what the ratio did not use
            for token, desired, used in (
                (request.token_a, request.amount_a_desired, plan.amount_a),
                (request.token_b, request.amount_b_desired, plan.amount_b),
            ):
                if desired > used:
                    legs.append(TransferLeg(token, desired - used, plan.pool_id, tx.user_address))
        else:
            request = plan.request
            legs.append(TransferLeg(request.token_a, plan.amount_a, plan.pool_id, request.to))
            legs.append(TransferLeg(request.token_b, plan.amount_b, plan.pool_id, request.to))
        return SettlementInstruction(idempotency_key=tx.id, signer=self.operator_account, legs=tuple(legs))

    def _commit(self, plan: Plan) -> SwapExecution | LiquidityExecution:
        if isinstance(plan, SwapPlan):
            return self.router.commit_swap(plan, exact=True)
        return self.router.commit_liquidity(plan, exact=True)

    def _pool_ids(self, plan: Plan) -> list[str]:
        if isinstance(plan, SwapPlan):
            return sorted({hop.pool_id for hop in plan.hops})
        return [plan.pool_id]

    async def _offload(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run pricing, commits and store access in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def attempt_tx2(self, tx_id: str) -> PendingTransaction:
        """Execute the operator-side settlement for a TX1_COMPLETE record.

        Transient ledger failures are retried with backoff; anything else, or
        exhausted retries, moves the record to TX2_FAILED with the error.
        Calling this on an already settled or failed record returns it
        unchanged.

        Raises:
            TransactionNotFound: If the id is unknown
            InvalidTransition: If TX1 has not completed yet
        """
        lock = self._tx_locks.setdefault(tx_id, asyncio.Lock())
        async with lock:
            tx = await self._offload(self.get, tx_id)
            if tx.state != TransactionState.TX1_COMPLETE:
                if tx.state == TransactionState.PENDING_TX1:
                    raise InvalidTransition(f"Transaction {tx_id} has no completed TX1")
                logger.info("tx2_already_attempted", tx_id=tx_id, state=tx.state.value)
                return tx
            return await self._settle(tx)

    async def _settle(self, tx: PendingTransaction) -> PendingTransaction:
        try:
            plan = await self._offload(self._plan, tx.type, tx.params)
        except Exception as e:
            return await self._offload(self._fail, tx, e)

        async with AsyncExitStack() as stack:
            for pool_id in self._pool_ids(plan):
                await stack.enter_async_context(self._pool_locks.setdefault(pool_id, asyncio.Lock()))

            # Re-price now that this pool's settlements are serialized
            try:
                plan = await self._offload(self._plan, tx.type, tx.params)
            except Exception as e:
                return await self._offload(self._fail, tx, e)
            instruction = self.build_instruction(tx, plan)

            retries = 0

            async def on_retry(attempt: int, error: BaseException, delay: float) -> None:
                nonlocal retries
                retries = attempt + 1
                current = await self._offload(self.get, tx.id)
                await self._offload(
                    self.store.update_transaction,
                    current.evolve(retry_count=tx.retry_count + retries, error_message=str(error)),
                )

            try:
                receipt = await retry_with_backoff(
                    lambda: self.ledger.settle(instruction),
                    self.retry_policy,
                    on_retry=on_retry,
                    sleep=self.sleep,
                )
            except Exception as e:
                return await self._offload(self._fail, await self._offload(self.get, tx.id), e)

            current = await self._offload(self.get, tx.id)
            try:
                settled = await self._offload(self._book, current, plan, receipt)
            except Exception as e:
                # Ledger already moved funds; keep the receipt for reconciliation
                return await self._offload(self._fail, current, e, tx2_hash=receipt.tx_hash)

        logger.info("tx2_complete", tx_id=tx.id, tx2_hash=receipt.tx_hash, retries=retries)
        return settled

    def _book(self, tx: PendingTransaction, plan: Plan, receipt: TransferReceipt) -> PendingTransaction:
        """Commit the settled amounts and mark the record TX2_COMPLETE, atomically."""
        pools = [self.router.registry.by_id(pool_id) for pool_id in self._pool_ids(plan)]
        with self.router.locked(pools):
            saved = [pool.state for pool in pools]
            try:
                with self.store.unit_of_work():
                    execution = self._commit(plan)
                    return self._transition(
                        tx,
                        TransactionState.TX2_COMPLETE,
                        tx2_hash=receipt.tx_hash,
                        tx2_completed_at=self.clock(),
                        error_message=None,
                        result=execution.to_dict(),
                    )
            except Exception:
                for pool, state in zip(pools, saved, strict=True):
                    pool.restore(state)
                raise

    def _fail(self, tx: PendingTransaction, error: BaseException, **changes: Any) -> PendingTransaction:
        logger.warning(
            "tx2_failed",
            tx_id=tx.id,
            error=str(error),
            error_class=classify_error(error),
        )
        return self._transition(
            tx,
            TransactionState.TX2_FAILED,
            error_message=f"{classify_error(error)}: {error}",
            tx2_failed_at=self.clock(),
            **changes,
        )

    async def resume_stuck(self, older_than_minutes: int = 0) -> list[PendingTransaction]:
        """Replay settlement for every TX1_COMPLETE record (restart recovery)."""
        stuck = self.list_stuck(older_than_minutes)
        if stuck:
            logger.info("resuming_stuck_transactions", count=len(stuck))
        return [await self.attempt_tx2(tx.id) for tx in reversed(stuck)]


__all__ = ["TwoPhaseCoordinator"]
