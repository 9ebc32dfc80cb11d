"""External ledger interface and record types."""

from agent_vault.ledger.actor import LedgerActor, unwrap_optional, unwrap_result
from agent_vault.ledger.models import (
    CanisterWalletInfo,
    QueuedAction,
    QueuedTransaction,
    QueueStats,
    QueueStatus,
    TransactionAction,
    TransactionPriority,
    WalletStatus,
    WalletSyncStatus,
)

__all__ = [
    "CanisterWalletInfo",
    "LedgerActor",
    "QueueStats",
    "QueueStatus",
    "QueuedAction",
    "QueuedTransaction",
    "TransactionAction",
    "TransactionPriority",
    "WalletStatus",
    "WalletSyncStatus",
    "unwrap_optional",
    "unwrap_result",
]
