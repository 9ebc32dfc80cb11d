"""Provider factory: the only place that instantiates concrete providers."""

from __future__ import annotations

from agent_vault.wallet.chains import Chain, normalize_chain
from agent_vault.wallet.providers.arweave import ArweaveProvider
from agent_vault.wallet.providers.base import BaseWalletProvider, ProviderConfig
from agent_vault.wallet.providers.cketh import CkEthProvider
from agent_vault.wallet.providers.icp import IcpProvider
from agent_vault.wallet.providers.polkadot import PolkadotProvider
from agent_vault.wallet.providers.solana import SolanaProvider

PROVIDERS: dict[Chain, type[BaseWalletProvider]] = {
    Chain.CKETH: CkEthProvider,
    Chain.POLKADOT: PolkadotProvider,
    Chain.SOLANA: SolanaProvider,
    Chain.ICP: IcpProvider,
    Chain.ARWEAVE: ArweaveProvider,
}


def create_provider(
    chain: str | Chain,
    *,
    rpc_url: str | None = None,
    is_testnet: bool = False,
    timeout: float = 30.0,
    config: ProviderConfig | None = None,
) -> BaseWalletProvider:
    """Create the provider for *chain*.

    Raises :class:`UnsupportedChainError` for unknown chain tags.
    """
    chain = normalize_chain(chain)
    if config is None:
        config = ProviderConfig(chain=chain, rpc_url=rpc_url, is_testnet=is_testnet, timeout=timeout)
    elif config.chain is not chain:
        raise ValueError(f"Provider config is for {config.chain.value}, not {chain.value}")
    return PROVIDERS[chain](config)
