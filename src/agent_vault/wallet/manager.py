"""High-level wallet manager used by AgentVault and the queue processor."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from agent_vault.errors import WalletNotFoundError
from agent_vault.ledger.actor import LedgerActor, unwrap_optional, unwrap_result
from agent_vault.ledger.models import CanisterWalletInfo, WalletStatus, WalletSyncStatus, to_millis
from agent_vault.wallet import key_derivation
from agent_vault.wallet.chains import Chain, normalize_chain
from agent_vault.wallet.models import CreationMethod, OperationResult, WalletData, new_wallet_id, utcnow
from agent_vault.wallet.storage import WalletStorage

logger = logging.getLogger("agent_vault.wallet.manager")

CANISTER_UNAVAILABLE = "Canister not available"

# Fields a caller may change after creation. Address, chain, path and secrets
# are fixed for the life of the wallet.
_MUTABLE_FIELDS = frozenset({"chain_metadata"})


class WalletManager:
    """Composes key derivation and storage, and mirrors public metadata to the ledger.

    Parameters
    ----------
    storage:
        Where wallet records live.
    ledger:
        Optional ledger actor. Without one, every sync call reports
        ``"Canister not available"`` and the wallet stays local-only.
    """

    def __init__(self, storage: WalletStorage, ledger: LedgerActor | None = None) -> None:
        self.storage = storage
        self.ledger = ledger
        self._connections: dict[tuple[str, str], Any] = {}

    # ------------------------------------------------------------------
    # Creation / import
    # ------------------------------------------------------------------

    def create_wallet(
        self,
        agent_id: str,
        chain: str | Chain,
        method: str | CreationMethod,
        *,
        seed_phrase: str | None = None,
        private_key: str | None = None,
        derivation_path: str | None = None,
        wallet_id: str | None = None,
        chain_metadata: dict[str, Any] | None = None,
    ) -> WalletData:
        """Derive a keypair, build the wallet record and persist it."""
        derived = key_derivation.derive_wallet_key(
            method,
            chain,
            seed_phrase=seed_phrase,
            private_key=private_key,
            derivation_path=derivation_path,
        )
        method = CreationMethod(method)
        uses_phrase = method in (CreationMethod.SEED, CreationMethod.MNEMONIC)
        wallet = WalletData(
            id=wallet_id or new_wallet_id(),
            agent_id=agent_id,
            chain=normalize_chain(chain),
            address=derived.address,
            private_key=None if uses_phrase else derived.private_key,
            mnemonic=" ".join(seed_phrase.split()) if uses_phrase and seed_phrase else None,
            derivation_path=derived.derivation_path,
            creation_method=method,
            chain_metadata=chain_metadata,
        )
        self.storage.save(wallet)
        logger.info(
            f"Wallet {wallet.id} created for agent {agent_id} on {wallet.chain.value} "
            f"via {method.value} ({wallet.address})"
        )
        return wallet

    def import_wallet_from_private_key(
        self, agent_id: str, chain: str | Chain, private_key: str
    ) -> WalletData:
        return self.create_wallet(
            agent_id, chain, CreationMethod.PRIVATE_KEY, private_key=private_key
        )

    def import_wallet_from_seed(
        self,
        agent_id: str,
        chain: str | Chain,
        seed_phrase: str,
        derivation_path: str | None = None,
    ) -> WalletData:
        return self.create_wallet(
            agent_id,
            chain,
            CreationMethod.SEED,
            seed_phrase=seed_phrase,
            derivation_path=derivation_path,
        )

    def import_wallet_from_mnemonic(
        self,
        agent_id: str,
        chain: str | Chain,
        mnemonic: str,
        derivation_path: str | None = None,
    ) -> WalletData:
        return self.create_wallet(
            agent_id,
            chain,
            CreationMethod.MNEMONIC,
            seed_phrase=mnemonic,
            derivation_path=derivation_path,
        )

    def generate_wallet(self, agent_id: str, chain: str | Chain, strength: int = 128) -> WalletData:
        """Create a wallet from a fresh CSPRNG-backed mnemonic."""
        mnemonic = key_derivation.generate_mnemonic(strength)
        return self.import_wallet_from_seed(agent_id, chain, mnemonic)

    @staticmethod
    def validate_seed_phrase(seed_phrase: str) -> bool:
        return key_derivation.validate_seed_phrase(seed_phrase)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_wallet(self, agent_id: str, wallet_id: str) -> WalletData | None:
        return self.storage.load(agent_id, wallet_id)

    def find_wallet(self, wallet_id: str) -> WalletData | None:
        """Look a wallet up by id across every agent."""
        for agent_id in self.storage.list_agents():
            if self.storage.exists(agent_id, wallet_id):
                return self.storage.load(agent_id, wallet_id)
        return None

    def list_agent_wallets(self, agent_id: str) -> list[str]:
        return self.storage.list_wallets(agent_id)

    def load_agent_wallets(self, agent_id: str) -> list[WalletData]:
        wallets = []
        for wallet_id in self.storage.list_wallets(agent_id):
            wallet = self.storage.load(agent_id, wallet_id)
            if wallet is not None:
                wallets.append(wallet)
        return wallets

    def has_wallet(self, agent_id: str, wallet_id: str) -> bool:
        return self.storage.exists(agent_id, wallet_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_wallet(self, agent_id: str, wallet_id: str, **changes: Any) -> WalletData:
        """Update mutable wallet fields and bump ``updated_at``.

        Raises
        ------
        WalletNotFoundError
            If the wallet does not exist.
        ValueError
            If an immutable field is targeted.
        """
        wallet = self.storage.load(agent_id, wallet_id)
        if wallet is None:
            raise WalletNotFoundError(wallet_id, agent_id)
        illegal = set(changes) - _MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Cannot update immutable wallet field(s): {', '.join(sorted(illegal))}")
        updated = wallet.model_copy(update={**changes, "updated_at": utcnow()})
        self.storage.save(updated)
        return updated

    def remove_wallet(self, agent_id: str, wallet_id: str) -> None:
        """Delete a wallet and drop its cached connection.

        Raises :class:`WalletNotFoundError` if there is nothing to delete.
        """
        self._connections.pop((agent_id, wallet_id), None)
        if not self.storage.delete(agent_id, wallet_id):
            raise WalletNotFoundError(wallet_id, agent_id)
        logger.info(f"Wallet {wallet_id} removed for agent {agent_id}")

    def clear_agent_wallets(self, agent_id: str) -> int:
        """Delete every wallet of an agent. Returns how many were removed."""
        wallet_ids = self.storage.list_wallets(agent_id)
        removed = self.storage.clear_wallets(agent_id)
        for wallet_id in wallet_ids:
            self._connections.pop((agent_id, wallet_id), None)
        logger.info(f"Cleared {removed} wallet(s) for agent {agent_id}")
        return removed

    # ------------------------------------------------------------------
    # Connection cache
    # ------------------------------------------------------------------

    def cache_wallet_connection(self, agent_id: str, wallet_id: str, connection: Any) -> None:
        self._connections[(agent_id, wallet_id)] = connection

    def get_cached_connection(self, agent_id: str, wallet_id: str) -> Any | None:
        return self._connections.get((agent_id, wallet_id))

    def clear_cached_connection(self, agent_id: str, wallet_id: str) -> None:
        self._connections.pop((agent_id, wallet_id), None)

    # ------------------------------------------------------------------
    # Ledger sync
    # ------------------------------------------------------------------

    async def sync_wallet_to_canister(self, agent_id: str, wallet_id: str) -> OperationResult:
        """Register the wallet's public metadata with the ledger."""
        if self.ledger is None:
            return OperationResult.fail(CANISTER_UNAVAILABLE)
        try:
            wallet = self.storage.load(agent_id, wallet_id)
            if wallet is None:
                return OperationResult.fail("Wallet not found")
            info = CanisterWalletInfo(
                id=wallet.id,
                agent_id=wallet.agent_id,
                chain=wallet.chain.value,
                address=wallet.address,
                registered_at=to_millis(wallet.created_at),
                status=WalletStatus.ACTIVE,
            )
            unwrap_result(await self.ledger.registerWallet(info.to_actor_payload()))
        except Exception as exc:
            logger.warning(f"Failed to sync wallet {wallet_id} to ledger: {exc}")
            return OperationResult.fail(str(exc) or type(exc).__name__)
        logger.info(f"Wallet {wallet_id} registered with ledger")
        return OperationResult.ok(wallet_id=wallet_id, registered_at=info.registered_at)

    async def sync_agent_wallets(self, agent_id: str) -> dict[str, list]:
        """Sync every wallet of an agent; one failure never stops the rest."""
        synced: list[str] = []
        failed: list[dict[str, str]] = []
        for wallet_id in self.storage.list_wallets(agent_id):
            result = await self.sync_wallet_to_canister(agent_id, wallet_id)
            if result.success:
                synced.append(wallet_id)
            else:
                failed.append({"wallet_id": wallet_id, "error": result.error or "Unknown error"})
        return {"synced": synced, "failed": failed}

    async def get_wallet_sync_status(self, agent_id: str, wallet_id: str) -> WalletSyncStatus:
        local_exists = self.storage.exists(agent_id, wallet_id)
        canister_status: Optional[CanisterWalletInfo] = None
        if self.ledger is not None:
            try:
                found = unwrap_optional(await self.ledger.getWallet(wallet_id))
                if found:
                    canister_status = CanisterWalletInfo.model_validate(found)
            except Exception as exc:
                logger.warning(f"Failed to read wallet {wallet_id} from ledger: {exc}")
        in_canister = canister_status is not None
        return WalletSyncStatus(
            wallet_id=wallet_id,
            in_canister=in_canister,
            canister_status=canister_status,
            local_exists=local_exists,
            synced=in_canister and local_exists,
        )

    async def list_canister_wallets(self, agent_id: str) -> list[CanisterWalletInfo]:
        if self.ledger is None:
            return []
        try:
            records = await self.ledger.listWallets(agent_id)
            return [CanisterWalletInfo.model_validate(r) for r in records or []]
        except Exception as exc:
            logger.error(f"Failed to list ledger wallets for agent {agent_id}: {exc}")
            return []

    async def deregister_wallet_from_canister(self, wallet_id: str) -> OperationResult:
        if self.ledger is None:
            return OperationResult.fail(CANISTER_UNAVAILABLE)
        return await self._ledger_call(
            f"deregister wallet {wallet_id}", lambda: self.ledger.deregisterWallet(wallet_id)
        )

    async def update_canister_wallet_status(
        self, wallet_id: str, status: str | WalletStatus
    ) -> OperationResult:
        if self.ledger is None:
            return OperationResult.fail(CANISTER_UNAVAILABLE)
        try:
            status = WalletStatus(status)
        except ValueError:
            return OperationResult.fail(f"Invalid wallet status: {status!r}")
        return await self._ledger_call(
            f"set wallet {wallet_id} status to {status.value}",
            lambda: self.ledger.updateWalletStatus(wallet_id, status.variant()),
        )

    async def _ledger_call(
        self, what: str, call: Callable[[], Awaitable[Any]]
    ) -> OperationResult:
        try:
            unwrap_result(await call())
        except Exception as exc:
            logger.warning(f"Ledger call failed ({what}): {exc}")
            return OperationResult.fail(str(exc) or type(exc).__name__)
        return OperationResult.ok()
