"""Two-phase settlement against a ledger without multi-party atomicity."""

from dexengine.settlement.coordinator import TwoPhaseCoordinator
from dexengine.settlement.ledger import (
    LedgerClient,
    SettlementInstruction,
    SimulatedLedger,
    TransferLeg,
    TransferReceipt,
)
from dexengine.settlement.retry import classify_error, retry_with_backoff

__all__ = [
    "TwoPhaseCoordinator",
    "LedgerClient",
    "SettlementInstruction",
    "SimulatedLedger",
    "TransferLeg",
    "TransferReceipt",
    "classify_error",
    "retry_with_backoff",
]
