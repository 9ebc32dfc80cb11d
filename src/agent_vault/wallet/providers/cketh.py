"""ckETH provider: Ethereum JSON-RPC through web3's async client."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from agent_vault.errors import ProviderError, SigningFailedError
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.key_derivation import decode_private_key_bytes
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest, TxStatus
from agent_vault.wallet.providers.base import BaseWalletProvider, ProviderConfig

logger = logging.getLogger("agent_vault.wallet.providers.cketh")

MAINNET_CHAIN_ID = 1
SEPOLIA_CHAIN_ID = 11155111
DEFAULT_GAS_LIMIT = 21_000
DEFAULT_GAS_PRICE_WEI = Web3.to_wei(20, "gwei")


class CkEthProvider(BaseWalletProvider):
    """Native ETH transfers signed locally with eth-account."""

    chain = Chain.CKETH

    def __init__(self, config: ProviderConfig | None = None, web3: AsyncWeb3 | None = None) -> None:
        super().__init__(config)
        self._w3: AsyncWeb3 | None = web3
        self._owns_w3 = web3 is None

    async def _on_connect(self) -> None:
        if self._w3 is None:
            self._w3 = AsyncWeb3(
                AsyncHTTPProvider(
                    self.get_rpc_url(), request_kwargs={"timeout": self.config.timeout}
                )
            )

    async def _on_disconnect(self) -> None:
        if self._owns_w3 and self._w3 is not None:
            disconnect = getattr(self._w3.provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
            self._w3 = None

    def _web3(self) -> AsyncWeb3:
        if not self._connected or self._w3 is None:
            raise ProviderError("cketh provider is not connected")
        return self._w3

    def _default_chain_id(self) -> int:
        return SEPOLIA_CHAIN_ID if self.is_testnet() else MAINNET_CHAIN_ID

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Balance:
        w3 = self._web3()
        try:
            wei = await w3.eth.get_balance(Web3.to_checksum_address(address))
            block = await w3.eth.block_number
        except (Web3Exception, OSError, ValueError) as exc:
            raise ProviderError(f"cketh balance lookup failed: {exc}") from exc
        return Balance(
            amount=self.format_amount(wei),
            denomination="ETH",
            chain=self.chain,
            address=address,
            block_number=block,
        )

    async def get_transaction_history(self, address: str, limit: int = 10) -> list[Transaction]:
        # Plain JSON-RPC has no per-address history index.
        logger.debug(f"No history index for {address} on cketh")
        return []

    async def get_block_number(self) -> int:
        try:
            return await self._web3().eth.block_number
        except (Web3Exception, OSError) as exc:
            raise ProviderError(f"cketh block number lookup failed: {exc}") from exc

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        try:
            tx = await self._web3().eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        except (Web3Exception, OSError, ValueError) as exc:
            raise ProviderError(f"cketh transaction lookup failed: {exc}") from exc
        gas_price = tx.get("gasPrice") or 0
        return Transaction(
            hash=Web3.to_hex(tx["hash"]),
            from_address=tx["from"],
            to=tx.get("to") or "",
            amount=self.format_amount(tx["value"]),
            chain=self.chain,
            status=TxStatus.CONFIRMED if tx.get("blockNumber") is not None else TxStatus.PENDING,
            fee=self.format_amount(gas_price * tx.get("gas", 0)),
        )

    def validate_address(self, address: str) -> bool:
        return isinstance(address, str) and Web3.is_address(address)

    # ------------------------------------------------------------------
    # Fees / signing / sending
    # ------------------------------------------------------------------

    async def _gas_price(self, request: TransactionRequest) -> int:
        if request.gas_price:
            return int(request.gas_price)
        if self._connected and self._w3 is not None:
            return await self._w3.eth.gas_price
        return DEFAULT_GAS_PRICE_WEI

    async def estimate_fee(self, request: TransactionRequest) -> str:
        gas_limit = int(request.gas_limit or DEFAULT_GAS_LIMIT)
        return self.format_amount(await self._gas_price(request) * gas_limit)

    async def sign_transaction(self, request: TransactionRequest, private_key: str) -> SignedTransaction:
        """Build and sign a legacy (EIP-155) transfer.

        When connected, the nonce and chain id come from the node; offline
        signing uses nonce 0 and the configured network's chain id.
        """
        key = decode_private_key_bytes(private_key)
        account = Account.from_key(key)
        if not self.validate_address(request.to):
            raise SigningFailedError(f"Invalid cketh recipient: {request.to}")

        tx: dict[str, Any] = {
            "to": Web3.to_checksum_address(request.to),
            "value": Web3.to_wei(Decimal(request.amount), "ether"),
            "gas": int(request.gas_limit or DEFAULT_GAS_LIMIT),
            "gasPrice": await self._gas_price(request),
        }
        if self._connected and self._w3 is not None:
            tx["nonce"] = await self._w3.eth.get_transaction_count(account.address)
            tx["chainId"] = await self._w3.eth.chain_id
        else:
            tx["nonce"] = 0
            tx["chainId"] = self._default_chain_id()

        try:
            signed = Account.sign_transaction(tx, key)
        except (TypeError, ValueError) as exc:
            raise SigningFailedError(f"cketh signing failed: {exc}") from exc
        return SignedTransaction(
            signed_tx=Web3.to_hex(signed.raw_transaction),
            signature=f"0x{signed.r:064x}{signed.s:064x}{signed.v:x}",
            tx_hash=Web3.to_hex(signed.hash),
            request=request,
        )

    async def send_transaction(
        self,
        from_address: str,
        request: TransactionRequest,
        signed: SignedTransaction | None = None,
    ) -> str:
        if signed is None:
            raise ProviderError("cketh send requires a signed transaction")
        try:
            tx_hash = await self._web3().eth.send_raw_transaction(signed.signed_tx)
        except (Web3Exception, OSError, ValueError) as exc:
            raise ProviderError(f"cketh broadcast failed: {exc}") from exc
        logger.info(f"cketh transfer of {request.amount} ETH from {from_address} sent")
        return Web3.to_hex(tx_hash)
