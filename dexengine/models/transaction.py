"""Two-phase transaction records.

State machine:

    PENDING_TX1 --(user signs & submits)--> TX1_COMPLETE
    TX1_COMPLETE --(operator settles)-----> TX2_COMPLETE   [terminal]
    TX1_COMPLETE --(settlement fails)-----> TX2_FAILED
    TX2_FAILED --(recovery)---------------> RECOVERED      [terminal]
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class TransactionType(str, Enum):
    SWAP = "swap"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"


class TransactionState(str, Enum):
    PENDING_TX1 = "PENDING_TX1"
    TX1_COMPLETE = "TX1_COMPLETE"
    TX2_COMPLETE = "TX2_COMPLETE"
    TX2_FAILED = "TX2_FAILED"
    RECOVERED = "RECOVERED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TransactionState.TX2_COMPLETE, TransactionState.RECOVERED})

ALLOWED_TRANSITIONS: dict[TransactionState, frozenset[TransactionState]] = {
    TransactionState.PENDING_TX1: frozenset({TransactionState.TX1_COMPLETE}),
    TransactionState.TX1_COMPLETE: frozenset(
        {TransactionState.TX2_COMPLETE, TransactionState.TX2_FAILED}
    ),
    TransactionState.TX2_FAILED: frozenset({TransactionState.RECOVERED}),
    TransactionState.TX2_COMPLETE: frozenset(),
    TransactionState.RECOVERED: frozenset(),
}


def can_transition(current: TransactionState, target: TransactionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class PendingTransaction:
    """Persisted state of one user operation on the ledger-backed network.

    `params` holds the full original request so settlement can be replayed
    after a crash.
    """

    id: str
    type: TransactionType
    user_address: str
    pool_id: str
    params: dict[str, Any]
    state: TransactionState
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
    # Settlement outcome (amounts actually moved), filled on TX2_COMPLETE
    result: dict[str, Any] = field(default_factory=dict)

    def evolve(self, **changes: Any) -> PendingTransaction:
        return replace(self, **changes)


__all__ = [
    "TransactionType",
    "TransactionState",
    "TERMINAL_STATES",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "PendingTransaction",
]
