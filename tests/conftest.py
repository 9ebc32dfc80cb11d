"""
Shared fixtures for the agent_vault test suite.

Nothing here touches the network: chain providers are replaced by
``FakeProvider`` and the ledger by ``FakeLedger``, an in-memory model of
the hosted wallet registry and transaction queue.
"""
from __future__ import annotations

import asyncio
import copy
import hashlib
from typing import Any

import pytest

from agent_vault.ledger.models import now_millis
from agent_vault.wallet import key_derivation
from agent_vault.wallet.chains import Chain, normalize_chain
from agent_vault.wallet.dispatcher import ChainDispatcher
from agent_vault.wallet.manager import WalletManager
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest
from agent_vault.wallet.providers.base import BaseWalletProvider, ProviderConfig, canonical_json
from agent_vault.wallet.storage import WalletStorage

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
ETH_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ETH_RECIPIENT = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
FAST_KDF_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def small_arweave_keys(monkeypatch):
    """Generate 1024-bit Arweave keys so tests stay fast."""
    monkeypatch.setattr(key_derivation, "ARWEAVE_KEY_BITS", 1024)


@pytest.fixture
def storage(tmp_path):
    return WalletStorage(tmp_path / "wallets", kdf_iterations=FAST_KDF_ITERATIONS)


@pytest.fixture
def encrypted_storage(tmp_path):
    return WalletStorage(
        tmp_path / "wallets", password="correct horse", kdf_iterations=FAST_KDF_ITERATIONS
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def manager(storage):
    return WalletManager(storage)


@pytest.fixture
def synced_manager(storage, ledger):
    return WalletManager(storage, ledger)


@pytest.fixture
def fake_providers():
    return {chain: FakeProvider(chain) for chain in Chain}


@pytest.fixture
def dispatcher(fake_providers):
    return ChainDispatcher(providers=fake_providers)


# ---------------------------------------------------------------------------
# Fake chain provider
# ---------------------------------------------------------------------------


class FakeProvider(BaseWalletProvider):
    """Deterministic in-memory provider for any chain.

    ``send_failures`` makes the next N sends raise; ``fail_for`` makes every
    send to one recipient raise; ``delay`` slows every send down.
    """

    def __init__(
        self,
        chain: str | Chain,
        *,
        send_failures: int = 0,
        fail_for: str | None = None,
        delay: float = 0.0,
    ) -> None:
        self.chain = normalize_chain(chain)
        super().__init__(ProviderConfig(chain=self.chain))
        self.send_failures = send_failures
        self.fail_for = fail_for
        self.delay = delay
        self.sent: list[tuple[str, TransactionRequest, SignedTransaction | None]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.connect_calls = 0

    async def _on_connect(self) -> None:
        self.connect_calls += 1

    async def _on_disconnect(self) -> None:
        pass

    async def get_balance(self, address: str) -> Balance:
        return Balance(
            amount="1.5",
            denomination=self.get_chain_info().native_symbol,
            chain=self.chain,
            address=address,
        )

    async def send_transaction(self, from_address, request, signed=None) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.send_failures > 0:
                self.send_failures -= 1
                raise RuntimeError("node unavailable")
            if self.fail_for is not None and request.to == self.fail_for:
                raise RuntimeError(f"rejected transfer to {request.to}")
            self.sent.append((from_address, request, signed))
            return f"0x{self.chain.value}-{len(self.sent)}"
        finally:
            self.in_flight -= 1

    async def sign_transaction(self, request, private_key) -> SignedTransaction:
        digest = hashlib.sha256(
            canonical_json(request.canonical_payload()) + private_key.encode("utf-8")
        ).hexdigest()
        return SignedTransaction(
            signed_tx="0x" + digest, signature=digest, tx_hash="0x" + digest, request=request
        )

    async def get_transaction_history(self, address, limit=10) -> list[Transaction]:
        return [
            Transaction(
                hash=f"{self.chain.value}-{i}",
                from_address=address,
                to="recipient",
                amount="0.1",
                chain=self.chain,
            )
            for i in range(limit + 5)
        ]

    async def estimate_fee(self, request) -> str:
        return "0.001"

    def validate_address(self, address) -> bool:
        return bool(address)

    async def get_block_number(self) -> int:
        return 42

    async def get_transaction(self, tx_hash) -> Transaction | None:
        return None


# ---------------------------------------------------------------------------
# Fake ledger
# ---------------------------------------------------------------------------


class FakeLedger:
    """In-memory ledger speaking the actor's camelCase, Candid-shaped API.

    ``broken`` holds method names that raise when called.
    """

    def __init__(self) -> None:
        self.wallets: dict[str, dict[str, Any]] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.broken: set[str] = set()

    def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.broken:
            raise ConnectionError(f"ledger unreachable ({method})")

    def calls_to(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    # Wallet registry

    async def registerWallet(self, info):
        self._enter("registerWallet", info)
        self.wallets[info["id"]] = copy.deepcopy(info)
        return {"ok": info["id"]}

    async def getWallet(self, wallet_id):
        self._enter("getWallet", wallet_id)
        found = self.wallets.get(wallet_id)
        return [copy.deepcopy(found)] if found else []

    async def listWallets(self, agent_id):
        self._enter("listWallets", agent_id)
        return [copy.deepcopy(w) for w in self.wallets.values() if w["agentId"] == agent_id]

    async def deregisterWallet(self, wallet_id):
        self._enter("deregisterWallet", wallet_id)
        if self.wallets.pop(wallet_id, None) is None:
            return {"err": "Wallet not found"}
        return {"ok": None}

    async def updateWalletStatus(self, wallet_id, status):
        self._enter("updateWalletStatus", wallet_id, status)
        if wallet_id not in self.wallets:
            return {"err": "Wallet not found"}
        self.wallets[wallet_id]["status"] = status
        return {"ok": None}

    # Transaction queue

    def enqueue(
        self,
        tx_id: str,
        wallet_id: str,
        *,
        to: str,
        amount: str,
        chain: str,
        memo: str | None = None,
    ) -> None:
        parameters = [["to", to], ["amount", amount], ["chain", chain]]
        if memo:
            parameters.append(["memo", memo])
        self.transactions[tx_id] = {
            "id": tx_id,
            "action": {
                "walletId": wallet_id,
                "action": {"send_funds": None},
                "parameters": parameters,
                "priority": {"normal": None},
                "threshold": [],
            },
            "status": {"pending": None},
            "result": [],
            "retryCount": 0,
            "scheduledAt": [],
            "createdAt": now_millis(),
            "signedAt": [],
            "completedAt": [],
            "errorMessage": [],
        }

    def status_of(self, tx_id: str) -> str:
        return next(iter(self.transactions[tx_id]["status"]))

    async def getPendingTransactions(self):
        self._enter("getPendingTransactions")
        return [
            copy.deepcopy(tx)
            for tx in self.transactions.values()
            if next(iter(tx["status"])) in ("pending", "queued")
        ]

    async def markTransactionSigned(self, tx_id, signature):
        self._enter("markTransactionSigned", tx_id, signature)
        tx = self.transactions[tx_id]
        tx.update(status={"signed": None}, signedAt=[now_millis()], result=[signature])
        return {"ok": None}

    async def markTransactionCompleted(self, tx_id, tx_hash):
        self._enter("markTransactionCompleted", tx_id, tx_hash)
        tx = self.transactions[tx_id]
        tx.update(status={"completed": None}, completedAt=[now_millis()], result=[tx_hash])
        return {"ok": None}

    async def markTransactionFailed(self, tx_id, error):
        self._enter("markTransactionFailed", tx_id, error)
        tx = self.transactions[tx_id]
        tx.update(status={"failed": None}, errorMessage=[error], retryCount=tx["retryCount"] + 1)
        return {"ok": None}

    async def retryTransaction(self, tx_id):
        self._enter("retryTransaction", tx_id)
        tx = self.transactions[tx_id]
        tx.update(
            status={"queued": None},
            retryCount=tx["retryCount"] + 1,
            result=[],
            signedAt=[],
            completedAt=[],
            errorMessage=[],
        )
        return {"ok": None}

    async def scheduleTransaction(self, tx_id, scheduled_at):
        self._enter("scheduleTransaction", tx_id, scheduled_at)
        self.transactions[tx_id]["scheduledAt"] = [scheduled_at]
        return {"ok": None}

    async def clearCompletedTransactions(self):
        self._enter("clearCompletedTransactions")
        done = [i for i, tx in self.transactions.items() if "completed" in tx["status"]]
        for tx_id in done:
            del self.transactions[tx_id]
        return len(done)

    async def getTransactionQueueStats(self):
        self._enter("getTransactionQueueStats")
        stats = {"total": len(self.transactions)}
        for name in ("pending", "queued", "signed", "completed", "failed"):
            stats[name] = sum(1 for tx in self.transactions.values() if name in tx["status"])
        return stats
