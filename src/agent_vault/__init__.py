"""Agent Vault - multi-chain wallet orchestration for autonomous agents."""

__version__ = "0.5.0"

from agent_vault.config import VaultConfig, load_config, save_config
from agent_vault.core.vault import AgentVault
from agent_vault.errors import AgentVaultError
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.models import TransactionRequest, WalletData

__all__ = [
    "AgentVault",
    "AgentVaultError",
    "Chain",
    "TransactionRequest",
    "VaultConfig",
    "WalletData",
    "__version__",
    "load_config",
    "save_config",
]
