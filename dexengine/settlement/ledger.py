"""Interface to the underlying ledger used for operator-side settlement.

The ledger cannot move funds between user, pool and operator atomically, so
a user operation is split into a user-signed transfer (TX1, outside this
engine) and an operator-signed settlement built here (TX2). Settlement is
keyed by an idempotency key so a replay after a crash cannot pay twice.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import structlog

from dexengine.errors import InsufficientBalance, LedgerUnavailable

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransferLeg:
    """Move `amount` of `token` from `source` to `destination`."""

    token: str
    amount: int
    source: str
    destination: str


@dataclass(frozen=True)
class SettlementInstruction:
    idempotency_key: str
    signer: str
    legs: tuple[TransferLeg, ...]


@dataclass(frozen=True)
class TransferReceipt:
    tx_hash: str
    idempotency_key: str


@runtime_checkable
class LedgerClient(Protocol):
    async def settle(self, instruction: SettlementInstruction) -> TransferReceipt:
        """Publish the instruction. Same idempotency key, same receipt."""
        ...


class SimulatedLedger:
    """In-process ledger for local mode and tests.

    Keeps balances per (account, token) and publishes each idempotency key
    at most once. Failures can be queued with `fail_next` to exercise retry
    and recovery paths.

    Args:
        enforce_balances: Reject legs whose source would go negative
        latency: Seconds each settle call takes
    """

    def __init__(self, enforce_balances: bool = False, latency: float = 0.0) -> None:
        self.enforce_balances = enforce_balances
        self.latency = latency
        self.balances: dict[tuple[str, str], int] = {}
        self.published: dict[str, TransferReceipt] = {}
        self.calls = 0
        self._failures: list[BaseException] = []

    def fund(self, account: str, token: str, amount: int) -> None:
        key = (account, token)
        self.balances[key] = self.balances.get(key, 0) + amount

    def balance_of(self, account: str, token: str) -> int:
        return self.balances.get((account, token), 0)

    def fail_next(self, count: int = 1, error: BaseException | None = None) -> None:
        """Make the next `count` settle calls raise `error`."""
        for _ in range(count):
            self._failures.append(error or LedgerUnavailable("Simulated ledger outage"))

    async def settle(self, instruction: SettlementInstruction) -> TransferReceipt:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._failures:
            raise self._failures.pop(0)

        existing = self.published.get(instruction.idempotency_key)
        if existing is not None:
            logger.info("settlement_replayed", key=instruction.idempotency_key)
            return existing

        if self.enforce_balances:
            needed: dict[tuple[str, str], int] = {}
            for leg in instruction.legs:
                key = (leg.source, leg.token)
                needed[key] = needed.get(key, 0) + leg.amount
            for (account, token), amount in needed.items():
                if self.balance_of(account, token) < amount:
                    raise InsufficientBalance(
                        f"{account} holds {self.balance_of(account, token)} {token}, needs {amount}"
                    )

        for leg in instruction.legs:
            self.fund(leg.source, leg.token, -leg.amount)
            self.fund(leg.destination, leg.token, leg.amount)

        digest = hashlib.sha256(instruction.idempotency_key.encode()).hexdigest().upper()
        receipt = TransferReceipt(tx_hash=digest, idempotency_key=instruction.idempotency_key)
        self.published[instruction.idempotency_key] = receipt
        logger.info(
            "settlement_published",
            key=instruction.idempotency_key,
            legs=len(instruction.legs),
            tx_hash=digest[:16],
        )
        return receipt


__all__ = [
    "TransferLeg",
    "SettlementInstruction",
    "TransferReceipt",
    "LedgerClient",
    "SimulatedLedger",
]
