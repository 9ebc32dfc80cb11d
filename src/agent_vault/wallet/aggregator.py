"""Batch execution of wallet actions across chains.

Actions run in chunks of at most ``max_concurrency``; every action in a
chunk runs concurrently and the next chunk starts only when the whole chunk
has finished. There is no rollback: actions that succeeded stay succeeded
even if others in the batch fail.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from agent_vault.errors import WalletNotFoundError
from agent_vault.ledger.models import TransactionPriority
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.dispatcher import ChainDispatcher
from agent_vault.wallet.manager import WalletManager
from agent_vault.wallet.models import Transaction, TransactionRequest, WalletData

logger = logging.getLogger("agent_vault.wallet.aggregator")


@dataclass
class MultiChainAction:
    wallet_id: str
    request: TransactionRequest
    agent_id: Optional[str] = None
    priority: TransactionPriority = TransactionPriority.NORMAL

    @property
    def chain(self) -> Chain:
        return self.request.chain


@dataclass
class CrossChainResult:
    action: MultiChainAction
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    executed_at: float = field(default_factory=time.time)
    duration: float = 0.0


@dataclass
class AggregatedResults:
    total: int
    succeeded: int
    failed: int
    results: list[CrossChainResult]
    duration: float


class CrossChainAggregator:
    """Runs :class:`MultiChainAction` batches through a :class:`ChainDispatcher`.

    Parameters
    ----------
    max_concurrency:
        Maximum number of actions in flight at once.
    timeout:
        Per-action deadline in seconds; ``None`` disables it.
    continue_on_error:
        When ``False``, no further chunk is scheduled after a chunk that
        contains a failure. Actions already running in that chunk finish.
    """

    def __init__(
        self,
        dispatcher: ChainDispatcher,
        wallet_manager: WalletManager,
        *,
        max_concurrency: int = 5,
        timeout: float | None = 30.0,
        continue_on_error: bool = True,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.dispatcher = dispatcher
        self.wallet_manager = wallet_manager
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.continue_on_error = continue_on_error

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, actions: list[MultiChainAction]) -> AggregatedResults:
        start = time.monotonic()
        if not actions:
            return AggregatedResults(total=0, succeeded=0, failed=0, results=[], duration=0.0)

        logger.info(f"Executing {len(actions)} cross-chain action(s)")
        results: list[CrossChainResult] = []
        for offset in range(0, len(actions), self.max_concurrency):
            chunk = actions[offset:offset + self.max_concurrency]
            chunk_results = await asyncio.gather(*(self._execute_action(a) for a in chunk))
            results.extend(chunk_results)
            if not self.continue_on_error and any(not r.success for r in chunk_results):
                logger.info("Stopping batch after a failed chunk (continue_on_error is off)")
                break

        succeeded = sum(1 for r in results if r.success)
        duration = time.monotonic() - start
        logger.info(
            f"Cross-chain batch done: {succeeded} succeeded, "
            f"{len(results) - succeeded} failed ({duration:.2f}s)"
        )
        return AggregatedResults(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
            duration=duration,
        )

    def _resolve_wallet(self, action: MultiChainAction) -> WalletData:
        if action.agent_id:
            wallet = self.wallet_manager.get_wallet(action.agent_id, action.wallet_id)
        else:
            wallet = self.wallet_manager.find_wallet(action.wallet_id)
        if wallet is None:
            raise WalletNotFoundError(action.wallet_id, action.agent_id)
        return wallet

    async def _execute_action(self, action: MultiChainAction) -> CrossChainResult:
        start = time.monotonic()
        try:
            wallet = self._resolve_wallet(action)
            tx = await asyncio.wait_for(
                self.dispatcher.dispatch_transaction(wallet, action.request), self.timeout
            )
        except asyncio.TimeoutError:
            return CrossChainResult(
                action=action,
                success=False,
                error=f"Timed out after {self.timeout}s",
                duration=time.monotonic() - start,
            )
        except Exception as exc:
            logger.warning(f"Action for wallet {action.wallet_id} failed: {exc}")
            return CrossChainResult(
                action=action,
                success=False,
                error=str(exc) or type(exc).__name__,
                duration=time.monotonic() - start,
            )
        return CrossChainResult(
            action=action,
            success=True,
            tx_hash=tx.hash,
            duration=time.monotonic() - start,
        )

    # ------------------------------------------------------------------
    # Read-only fan-out
    # ------------------------------------------------------------------

    async def get_balances(self, wallets: list[WalletData]) -> list[dict[str, Any]]:
        async def one(wallet: WalletData) -> dict[str, Any]:
            try:
                balance = await self.dispatcher.get_balance(wallet)
            except Exception as exc:
                return {
                    "wallet": wallet,
                    "amount": "0",
                    "denomination": "N/A",
                    "success": False,
                    "error": str(exc),
                }
            return {
                "wallet": wallet,
                "amount": balance.amount,
                "denomination": balance.denomination,
                "success": True,
                "error": None,
            }

        return list(await asyncio.gather(*(one(w) for w in wallets)))

    async def get_multi_chain_history(
        self, wallets: list[WalletData], limit: int = 20
    ) -> list[Transaction]:
        async def one(wallet: WalletData) -> list[Transaction]:
            try:
                return await self.dispatcher.get_transaction_history(wallet, limit)
            except Exception as exc:
                logger.error(f"Failed to get history for wallet {wallet.id}: {exc}")
                return []

        histories = await asyncio.gather(*(one(w) for w in wallets))
        merged = [tx for history in histories for tx in history]
        return merged[: len(wallets) * limit]

    async def estimate_fees(self, actions: list[MultiChainAction]) -> list[dict[str, Any]]:
        async def one(action: MultiChainAction) -> dict[str, Any]:
            try:
                wallet = self._resolve_wallet(action)
                fee = await self.dispatcher.estimate_fee(wallet, action.request)
            except Exception as exc:
                return {"action": action, "fee": "N/A", "success": False, "error": str(exc)}
            return {"action": action, "fee": fee, "success": True, "error": None}

        return list(await asyncio.gather(*(one(a) for a in actions)))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def create_summary(results: AggregatedResults) -> str:
        rate = (results.succeeded / results.total * 100) if results.total else 0.0
        lines = [
            "Cross-Chain Execution Summary",
            "=============================",
            f"Total Actions:   {results.total}",
            f"Succeeded:       {results.succeeded}",
            f"Failed:          {results.failed}",
            f"Success Rate:    {rate:.2f}%",
            f"Total Duration:  {results.duration:.3f}s",
        ]
        failures = [r for r in results.results if not r.success]
        if failures:
            lines.append("")
            lines.append("Failed Actions:")
            for r in failures:
                lines.append(
                    f"  - {r.action.wallet_id} ({r.action.chain.value}): {r.error}"
                )
        return "\n".join(lines)
