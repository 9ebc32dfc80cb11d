"""AgentVault - the top-level object that wires the wallet stack together."""

from __future__ import annotations

import logging
from pathlib import Path

from agent_vault.config import VaultConfig, get_config_path, get_root_dir, load_config, save_config
from agent_vault.ledger.actor import LedgerActor
from agent_vault.wallet.aggregator import CrossChainAggregator
from agent_vault.wallet.dispatcher import ChainDispatcher
from agent_vault.wallet.manager import WalletManager
from agent_vault.wallet.storage import WalletStorage
from agent_vault.wallet.transaction_queue import TransactionQueueProcessor
from agent_vault.wallet.vetkeys import VetKeysAdapter

logger = logging.getLogger("agent_vault.vault")


class AgentVault:
    """Storage, wallet manager, dispatcher, aggregator and vetKeys adapter
    built from one :class:`VaultConfig`.

    The ledger actor is optional. Without one, wallets stay local-only and
    no queue processor can be created.
    """

    def __init__(
        self,
        config: VaultConfig,
        root_dir: Path,
        ledger: LedgerActor | None = None,
    ):
        self.config = config
        self.root_dir = root_dir
        self.ledger = ledger

        self.storage = WalletStorage(
            config.storage.resolve_base_dir(),
            password=config.storage.password,
            kdf_iterations=config.storage.kdf_iterations,
        )
        self.wallet_manager = WalletManager(self.storage, ledger)
        self.dispatcher = ChainDispatcher(
            is_testnet=config.network.is_testnet,
            rpc_urls=config.network.rpc_urls,
            timeout=config.network.request_timeout,
        )
        self.aggregator = CrossChainAggregator(
            self.dispatcher,
            self.wallet_manager,
            max_concurrency=config.aggregator.max_concurrency,
            timeout=config.aggregator.timeout,
            continue_on_error=config.aggregator.continue_on_error,
        )
        self.vetkeys = VetKeysAdapter(
            threshold=config.vetkeys.threshold,
            total_parties=config.vetkeys.total_parties,
            encryption_algorithm=config.vetkeys.encryption_algorithm,
            dispatcher=self.dispatcher,
        )

    @classmethod
    async def load(cls, base_path: Path | None = None, ledger: LedgerActor | None = None) -> AgentVault:
        """Load an existing vault from a .agent-vault directory."""
        config_path = get_config_path(base_path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"No vault found at {config_path.parent}. Call AgentVault.init() first."
            )

        config = load_config(config_path)
        logging.getLogger("agent_vault").setLevel(config.log_level)
        vault = cls(config=config, root_dir=get_root_dir(base_path), ledger=ledger)
        vault.storage.ensure_directories()
        logger.info(
            f"Vault loaded from {vault.root_dir} "
            f"({'testnet' if config.network.is_testnet else 'mainnet'}, "
            f"{len(vault.storage.list_agents())} agent(s))"
        )
        return vault

    @classmethod
    async def init(
        cls,
        base_path: Path | None = None,
        config: VaultConfig | None = None,
        ledger: LedgerActor | None = None,
    ) -> AgentVault:
        """Write a config into a new .agent-vault directory and load it."""
        config_path = get_config_path(base_path)
        save_config(config or VaultConfig(), config_path)
        logger.info(f"Initialized vault config at {config_path}")
        return await cls.load(base_path, ledger=ledger)

    def queue_processor(self, agent_id: str | None = None) -> TransactionQueueProcessor:
        """Build a processor for the ledger's transaction queue.

        Raises ``RuntimeError`` when the vault has no ledger attached.
        """
        if self.ledger is None:
            raise RuntimeError("No ledger attached; the transaction queue is unavailable")
        return TransactionQueueProcessor(
            self.ledger,
            self.wallet_manager,
            max_retries=self.config.queue.max_retries,
            agent_id=agent_id or self.config.queue.agent_id,
            dispatcher=self.dispatcher,
        )

    async def shutdown(self) -> None:
        """Disconnect every chain provider."""
        results = await self.dispatcher.disconnect_all()
        failed = [chain for chain, r in results.items() if not r["success"]]
        if failed:
            logger.warning(f"Providers failed to disconnect cleanly: {', '.join(failed)}")
