"""Chain definitions for the five supported networks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from agent_vault.errors import UnsupportedChainError


class Chain(str, Enum):
    CKETH = "cketh"
    POLKADOT = "polkadot"
    SOLANA = "solana"
    ICP = "icp"
    ARWEAVE = "arweave"


class Curve(str, Enum):
    SECP256K1 = "secp256k1"
    ED25519 = "ed25519"
    RSA = "rsa"


@dataclass(frozen=True)
class ChainInfo:
    """Static facts about a supported network."""

    chain: Chain
    native_symbol: str
    decimals: int
    curve: Curve
    derivation_path: str | None  # None == no HD path (Arweave)
    rpc_url: str
    testnet_rpc_url: str
    explorer_url: str

    def default_rpc_url(self, is_testnet: bool = False) -> str:
        return self.testnet_rpc_url if is_testnet else self.rpc_url


CHAINS: dict[Chain, ChainInfo] = {
    Chain.CKETH: ChainInfo(
        chain=Chain.CKETH,
        native_symbol="ETH",
        decimals=18,
        curve=Curve.SECP256K1,
        derivation_path="m/44'/60'/0'/0/0",
        rpc_url="https://eth.llamarpc.com",
        testnet_rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        explorer_url="https://etherscan.io",
    ),
    Chain.POLKADOT: ChainInfo(
        chain=Chain.POLKADOT,
        native_symbol="DOT",
        decimals=10,
        curve=Curve.ED25519,
        derivation_path="m/44'/354'/0'/0'/0'",
        rpc_url="https://polkadot-public-sidecar.parity-chains.parity.io",
        testnet_rpc_url="https://westend-public-sidecar.parity-chains.parity.io",
        explorer_url="https://polkadot.subscan.io",
    ),
    Chain.SOLANA: ChainInfo(
        chain=Chain.SOLANA,
        native_symbol="SOL",
        decimals=9,
        curve=Curve.ED25519,
        derivation_path="m/44'/501'/0'/0'",
        rpc_url="https://api.mainnet-beta.solana.com",
        testnet_rpc_url="https://api.devnet.solana.com",
        explorer_url="https://explorer.solana.com",
    ),
    Chain.ICP: ChainInfo(
        chain=Chain.ICP,
        native_symbol="ICP",
        decimals=8,
        curve=Curve.SECP256K1,
        derivation_path="m/44'/223'/0'/0/0",
        rpc_url="https://ledger-api.internetcomputer.org",
        testnet_rpc_url="https://ledger-api.internetcomputer.org",
        explorer_url="https://dashboard.internetcomputer.org",
    ),
    Chain.ARWEAVE: ChainInfo(
        chain=Chain.ARWEAVE,
        native_symbol="AR",
        decimals=12,
        curve=Curve.RSA,
        derivation_path=None,
        rpc_url="https://arweave.net",
        testnet_rpc_url="https://arweave.net",
        explorer_url="https://viewblock.io/arweave",
    ),
}

_ALIASES: dict[str, Chain] = {
    "cketh": Chain.CKETH,
    "eth": Chain.CKETH,
    "ethereum": Chain.CKETH,
    "polkadot": Chain.POLKADOT,
    "dot": Chain.POLKADOT,
    "solana": Chain.SOLANA,
    "sol": Chain.SOLANA,
    "icp": Chain.ICP,
    "arweave": Chain.ARWEAVE,
    "ar": Chain.ARWEAVE,
}


def normalize_chain(chain: str | Chain) -> Chain:
    """Map a chain tag or alias to its canonical :class:`Chain`.

    Raises :class:`UnsupportedChainError` for anything unknown.
    """
    if isinstance(chain, Chain):
        return chain
    if not isinstance(chain, str):
        raise UnsupportedChainError(chain)
    try:
        return _ALIASES[chain.strip().lower()]
    except KeyError:
        raise UnsupportedChainError(chain) from None


def get_chain(chain: str | Chain) -> ChainInfo:
    """Get chain info by tag or alias."""
    return CHAINS[normalize_chain(chain)]


def list_chain_names() -> list[str]:
    """Return the canonical names of all supported chains."""
    return [c.value for c in CHAINS]
