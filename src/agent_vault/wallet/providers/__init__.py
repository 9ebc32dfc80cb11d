"""Per-chain wallet providers behind one capability set."""

from agent_vault.wallet.providers.arweave import ArweaveProvider
from agent_vault.wallet.providers.base import BaseWalletProvider, ProviderConfig
from agent_vault.wallet.providers.cketh import CkEthProvider
from agent_vault.wallet.providers.factory import PROVIDERS, create_provider
from agent_vault.wallet.providers.icp import IcpProvider
from agent_vault.wallet.providers.polkadot import PolkadotProvider
from agent_vault.wallet.providers.solana import SolanaProvider

__all__ = [
    "ArweaveProvider",
    "BaseWalletProvider",
    "CkEthProvider",
    "IcpProvider",
    "PROVIDERS",
    "PolkadotProvider",
    "ProviderConfig",
    "SolanaProvider",
    "create_provider",
]
