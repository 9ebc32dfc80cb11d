"""The external ledger surface consumed by the wallet core.

The ledger is a hosted state machine reached through an actor client. Its
method names are the remote method names, so they stay camelCase. Results
of mutating wallet calls are ``{"ok": ...}`` or ``{"err": "..."}``
variants. Any object with these coroutine methods can be injected,
including the in-memory fake used by the tests.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from agent_vault.errors import LedgerCallError


@runtime_checkable
class LedgerActor(Protocol):
    # Wallet registry
    async def registerWallet(self, info: dict[str, Any]) -> dict[str, Any]: ...

    async def getWallet(self, wallet_id: str) -> Optional[dict[str, Any]]: ...

    async def listWallets(self, agent_id: str) -> list[dict[str, Any]]: ...

    async def deregisterWallet(self, wallet_id: str) -> dict[str, Any]: ...

    async def updateWalletStatus(self, wallet_id: str, status: dict[str, None]) -> dict[str, Any]: ...

    # Transaction queue
    async def getPendingTransactions(self) -> list[dict[str, Any]]: ...

    async def markTransactionSigned(self, tx_id: str, signature: str) -> Any: ...

    async def markTransactionCompleted(self, tx_id: str, tx_hash: str) -> Any: ...

    async def markTransactionFailed(self, tx_id: str, error: str) -> Any: ...

    async def retryTransaction(self, tx_id: str) -> Any: ...

    async def scheduleTransaction(self, tx_id: str, scheduled_at: int) -> Any: ...

    async def clearCompletedTransactions(self) -> Any: ...

    async def getTransactionQueueStats(self) -> dict[str, int]: ...


def unwrap_result(result: Any) -> Any:
    """Return the ``ok`` payload of a ledger variant or raise on ``err``.

    Non-variant results are returned unchanged.
    """
    if isinstance(result, dict):
        if "err" in result:
            raise LedgerCallError(str(result["err"]))
        if "ok" in result:
            return result["ok"]
    return result


def unwrap_optional(result: Any) -> Any:
    """Candid ``opt`` values arrive as ``[]`` or ``[value]``."""
    if isinstance(result, (list, tuple)):
        return result[0] if result else None
    return result
