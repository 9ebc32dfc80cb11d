"""Routes chain-agnostic wallet operations to the right provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from agent_vault.errors import SigningFailedError
from agent_vault.wallet.chains import CHAINS, Chain, normalize_chain
from agent_vault.wallet.key_derivation import resolve_private_key
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest, TxStatus, WalletData
from agent_vault.wallet.providers.base import BaseWalletProvider
from agent_vault.wallet.providers.factory import create_provider

logger = logging.getLogger("agent_vault.wallet.dispatcher")


class ChainDispatcher:
    """Holds one provider per supported chain, created up front.

    Parameters
    ----------
    is_testnet:
        Point every default provider at its test network.
    rpc_urls:
        Optional per-chain RPC URL overrides (keys may be chain aliases).
    timeout:
        HTTP timeout in seconds for each provider.
    providers:
        Ready-made providers that replace the defaults for their chains.
    """

    def __init__(
        self,
        *,
        is_testnet: bool = False,
        rpc_urls: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        providers: Mapping[str | Chain, BaseWalletProvider] | None = None,
    ) -> None:
        self.is_testnet = is_testnet
        overrides = {normalize_chain(k): v for k, v in (rpc_urls or {}).items()}
        injected = {normalize_chain(k): v for k, v in (providers or {}).items()}

        self._providers: dict[Chain, BaseWalletProvider] = {}
        for chain in CHAINS:
            provider = injected.get(chain) or create_provider(
                chain, rpc_url=overrides.get(chain), is_testnet=is_testnet, timeout=timeout
            )
            if provider.get_chain() is not chain:
                raise ValueError(f"Provider {provider!r} cannot serve {chain.value}")
            self._providers[chain] = provider

    # ------------------------------------------------------------------
    # Provider lookup
    # ------------------------------------------------------------------

    def get_provider(self, chain: str | Chain) -> BaseWalletProvider:
        """Return the provider for *chain* or raise ``UnsupportedChainError``."""
        return self._providers[normalize_chain(chain)]

    async def _connected(self, chain: str | Chain) -> BaseWalletProvider:
        provider = self.get_provider(chain)
        await provider.connect()
        return provider

    @property
    def chains(self) -> list[Chain]:
        return list(self._providers)

    # ------------------------------------------------------------------
    # Wallet operations
    # ------------------------------------------------------------------

    async def sign_transaction(self, wallet: WalletData, request: TransactionRequest) -> SignedTransaction:
        """Sign *request* with *wallet*'s key.

        The private key is resolved for this call only and is not kept.
        """
        if request.chain is not wallet.chain:
            raise SigningFailedError(
                f"Request is for {request.chain.value} but wallet {wallet.id} is on {wallet.chain.value}"
            )
        provider = await self._connected(wallet.chain)
        return await provider.sign_transaction(request, resolve_private_key(wallet))

    async def dispatch_transaction(self, wallet: WalletData, request: TransactionRequest) -> Transaction:
        """Sign, broadcast and return the transaction as ``pending``."""
        provider = await self._connected(wallet.chain)
        signed = await self.sign_transaction(wallet, request)
        try:
            fee = await provider.estimate_fee(request)
        except Exception as exc:
            logger.warning(f"Fee estimate failed for wallet {wallet.id}: {exc}")
            fee = None
        # nothing after the broadcast may raise
        tx_hash = await provider.send_transaction(wallet.address, request, signed)
        logger.info(
            f"Dispatched {request.amount} on {wallet.chain.value} from wallet {wallet.id}: {tx_hash}"
        )
        return Transaction(
            hash=tx_hash,
            from_address=wallet.address,
            to=request.to,
            amount=request.amount,
            chain=wallet.chain,
            status=TxStatus.PENDING,
            fee=fee,
        )

    async def get_balance(self, wallet: WalletData) -> Balance:
        provider = await self._connected(wallet.chain)
        return await provider.get_balance(wallet.address)

    async def get_transaction_history(self, wallet: WalletData, limit: int = 20) -> list[Transaction]:
        provider = await self._connected(wallet.chain)
        history = await provider.get_transaction_history(wallet.address, limit)
        return history[:limit]

    async def estimate_fee(self, wallet: WalletData, request: TransactionRequest) -> str:
        provider = await self._connected(wallet.chain)
        return await provider.estimate_fee(request)

    # ------------------------------------------------------------------
    # Chain operations
    # ------------------------------------------------------------------

    def validate_address(self, address: str, chain: str | Chain) -> bool:
        return self.get_provider(chain).validate_address(address)

    async def get_block_number(self, chain: str | Chain) -> int:
        provider = await self._connected(chain)
        return await provider.get_block_number()

    async def get_transaction(self, chain: str | Chain, tx_hash: str) -> Transaction | None:
        provider = await self._connected(chain)
        return await provider.get_transaction(tx_hash)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect_all(self) -> dict[str, dict[str, Any]]:
        """Connect every provider; failures are reported per chain, never raised."""
        return await self._fan_out("connect")

    async def disconnect_all(self) -> dict[str, dict[str, Any]]:
        return await self._fan_out("disconnect")

    async def _fan_out(self, method: str) -> dict[str, dict[str, Any]]:
        chains = list(self._providers)
        outcomes = await asyncio.gather(
            *(getattr(self._providers[c], method)() for c in chains),
            return_exceptions=True,
        )
        results: dict[str, dict[str, Any]] = {}
        for chain, outcome in zip(chains, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Failed to {method} {chain.value} provider: {outcome}")
                results[chain.value] = {"success": False, "error": str(outcome)}
            else:
                results[chain.value] = {"success": True, "error": None}
        return results
