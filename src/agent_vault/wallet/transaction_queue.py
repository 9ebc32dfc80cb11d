"""Drains the ledger's pending-transaction queue.

Status machine kept by the ledger::

    pending -> queued -> signed -> completed
        \\         \\         \\
         +---------+---------+--> failed --(retry)--> queued

Transactions are processed strictly one at a time so that two
transactions from the same wallet never race for a nonce.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from agent_vault.ledger.actor import LedgerActor
from agent_vault.ledger.models import QueuedAction, QueuedTransaction, QueueStats, to_millis
from agent_vault.wallet.manager import WalletManager
from agent_vault.wallet.models import OperationResult, SignedTransaction, TransactionRequest, WalletData

logger = logging.getLogger("agent_vault.wallet.transaction_queue")


@runtime_checkable
class TransactionSigner(Protocol):
    async def sign(self, wallet: WalletData, request: TransactionRequest) -> Optional[SignedTransaction]: ...


SignCallback = Callable[[WalletData, TransactionRequest], Awaitable[Optional[SignedTransaction]]]
SignerLike = Union[TransactionSigner, SignCallback]


class DispatcherSigner:
    """Signs through a :class:`ChainDispatcher`, i.e. with the wallet's own key."""

    def __init__(self, dispatcher: Any) -> None:
        self.dispatcher = dispatcher

    async def sign(self, wallet: WalletData, request: TransactionRequest) -> Optional[SignedTransaction]:
        return await self.dispatcher.sign_transaction(wallet, request)


@dataclass
class ProcessResult:
    transaction_id: str
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    processed_at: float = field(default_factory=time.time)


def map_action_to_request(action: QueuedAction) -> TransactionRequest:
    """Turn the ledger's key/value parameter list into a transfer request."""
    params = action.params()
    return TransactionRequest(
        to=params.get("to", ""),
        amount=params.get("amount", "0"),
        chain=params.get("chain", "cketh"),
        memo=params.get("memo"),
        gas_price=params.get("gasPrice"),
        gas_limit=params.get("gasLimit"),
    )


class TransactionQueueProcessor:
    """Processes queued ledger transactions with a bounded number of attempts.

    Parameters
    ----------
    ledger:
        The ledger actor holding the queue.
    wallet_manager:
        Resolves ``walletId`` to a local wallet.
    max_retries:
        Total attempts per transaction. After a failed attempt a retry is
        requested while ``retry_count + 1 < max_retries``; otherwise the
        transaction is marked failed.
    agent_id:
        Restrict wallet lookup to one agent. Without it the wallet id is
        searched across all agents.
    dispatcher:
        When given, ``broadcast=True`` sends signed transactions and marks
        them completed.
    """

    def __init__(
        self,
        ledger: LedgerActor,
        wallet_manager: WalletManager,
        *,
        max_retries: int = 3,
        agent_id: str | None = None,
        dispatcher: Any | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.ledger = ledger
        self.wallet_manager = wallet_manager
        self.max_retries = max_retries
        self.agent_id = agent_id
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Queue processing
    # ------------------------------------------------------------------

    async def fetch_pending_transactions(self) -> list[QueuedTransaction]:
        try:
            raw = await self.ledger.getPendingTransactions()
        except Exception as exc:
            logger.error(f"Failed to fetch pending transactions: {exc}")
            return []
        pending = []
        for item in raw or []:
            try:
                pending.append(QueuedTransaction.model_validate(item))
            except ValueError as exc:
                logger.error(f"Skipping malformed queued transaction: {exc}")
        return pending

    async def process_pending_transactions(
        self, signer: SignerLike, *, broadcast: bool = False
    ) -> list[ProcessResult]:
        """Process every pending transaction in order and report each outcome."""
        if broadcast and self.dispatcher is None:
            raise ValueError("broadcast=True needs a dispatcher")
        results = []
        for tx in await self.fetch_pending_transactions():
            results.append(await self._process_transaction(tx, signer, broadcast))
        if results:
            ok = sum(1 for r in results if r.success)
            logger.info(f"Processed {len(results)} queued transaction(s): {ok} succeeded")
        return results

    def _find_wallet(self, wallet_id: str) -> WalletData | None:
        if self.agent_id:
            return self.wallet_manager.get_wallet(self.agent_id, wallet_id)
        return self.wallet_manager.find_wallet(wallet_id)

    async def _process_transaction(
        self, tx: QueuedTransaction, signer: SignerLike, broadcast: bool
    ) -> ProcessResult:
        try:
            wallet = self._find_wallet(tx.action.wallet_id)
            if wallet is None:
                await self._mark_failed(tx.id, "Wallet not found")
                return ProcessResult(transaction_id=tx.id, success=False, error="Wallet not found")

            request = map_action_to_request(tx.action)
            signed = await _call_signer(signer, wallet, request)
            if signed is None:
                await self._mark_failed(tx.id, "Signing failed")
                return ProcessResult(transaction_id=tx.id, success=False, error="Signing failed")

            await self._mark_signed(tx.id, signed.signature or "")
            tx_hash = signed.tx_hash
            if broadcast:
                provider = self.dispatcher.get_provider(wallet.chain)
                await provider.connect()
                tx_hash = await provider.send_transaction(wallet.address, request, signed)
                await self.mark_completed(tx.id, tx_hash)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            # max_retries bounds total attempts; the ledger bumps retry_count on each failure
            if tx.retry_count + 1 < self.max_retries:
                logger.warning(
                    f"Transaction {tx.id} attempt {tx.retry_count + 1}/{self.max_retries} "
                    f"failed, retrying: {message}"
                )
                await self._retry(tx.id)
            else:
                logger.error(f"Transaction {tx.id} failed permanently: {message}")
                await self._mark_failed(tx.id, message)
            return ProcessResult(transaction_id=tx.id, success=False, error=message)

        return ProcessResult(transaction_id=tx.id, success=True, tx_hash=tx_hash)

    # ------------------------------------------------------------------
    # Best-effort ledger transitions
    # ------------------------------------------------------------------

    async def _mark_signed(self, tx_id: str, signature: str) -> None:
        try:
            await self.ledger.markTransactionSigned(tx_id, signature)
        except Exception as exc:
            logger.error(f"Failed to mark transaction {tx_id} as signed: {exc}")

    async def _mark_failed(self, tx_id: str, error: str) -> None:
        try:
            await self.ledger.markTransactionFailed(tx_id, error)
        except Exception as exc:
            logger.error(f"Failed to mark transaction {tx_id} as failed: {exc}")

    async def _retry(self, tx_id: str) -> None:
        try:
            await self.ledger.retryTransaction(tx_id)
        except Exception as exc:
            logger.error(f"Failed to request retry for transaction {tx_id}: {exc}")

    # ------------------------------------------------------------------
    # Pass-throughs
    # ------------------------------------------------------------------

    async def mark_completed(self, tx_id: str, tx_hash: str) -> OperationResult:
        return await self._call("markTransactionCompleted", tx_id, tx_hash)

    async def schedule_transaction(self, tx_id: str, when: datetime | int) -> OperationResult:
        millis = when if isinstance(when, int) else to_millis(when)
        return await self._call("scheduleTransaction", tx_id, millis)

    async def clear_completed(self) -> OperationResult:
        return await self._call("clearCompletedTransactions")

    async def get_stats(self) -> OperationResult:
        result = await self._call("getTransactionQueueStats")
        if not result.success:
            return result
        try:
            stats = QueueStats.model_validate(result.data["value"])
        except ValueError as exc:
            return OperationResult.fail(f"Malformed queue stats: {exc}")
        return OperationResult.ok(stats=stats)

    async def _call(self, method: str, *args: Any) -> OperationResult:
        try:
            value = await getattr(self.ledger, method)(*args)
        except Exception as exc:
            logger.error(f"Ledger call {method} failed: {exc}")
            return OperationResult.fail(str(exc) or type(exc).__name__)
        return OperationResult.ok(value=value)


async def _call_signer(
    signer: SignerLike, wallet: WalletData, request: TransactionRequest
) -> Optional[SignedTransaction]:
    if isinstance(signer, TransactionSigner):
        return await signer.sign(wallet, request)
    result = signer(wallet, request)
    if inspect.isawaitable(result):
        result = await result
    return result
