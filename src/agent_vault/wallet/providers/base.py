"""Common provider contract shared by every chain adapter."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar

import httpx

from agent_vault.errors import ProviderError
from agent_vault.wallet.chains import Chain, ChainInfo, get_chain
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest

logger = logging.getLogger("agent_vault.wallet.providers")


@dataclass
class ProviderConfig:
    """Connection settings for one chain provider.

    ``transport`` lets callers swap the HTTP transport (for example an
    ``httpx.MockTransport`` in tests).
    """

    chain: Chain
    rpc_url: str | None = None
    is_testnet: bool = False
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None


def to_base_units(amount: str | Decimal, decimals: int) -> int:
    """Convert a decimal amount in native units to integer base units."""
    value = Decimal(str(amount)) * (Decimal(10) ** decimals)
    if value != value.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(value)


def from_base_units(value: int | str, decimals: int) -> str:
    """Format integer base units as a plain decimal string in native units."""
    amount = Decimal(int(value)) / (Decimal(10) ** decimals)
    return format(amount.normalize(), "f")


def canonical_json(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class BaseWalletProvider(ABC):
    """Capability set every chain provider implements.

    ``connect()`` is idempotent and must be awaited before any call that
    touches the network. ``disconnect()`` releases the HTTP client.
    """

    chain: ClassVar[Chain]

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self.config = config or ProviderConfig(chain=self.chain)
        if self.config.chain is not self.chain:
            raise ValueError(
                f"{type(self).__name__} serves {self.chain.value}, not {self.config.chain.value}"
            )
        self._client: httpx.AsyncClient | None = None
        self._connected = False

    # ------------------------------------------------------------------
    # Chain info
    # ------------------------------------------------------------------

    def get_chain(self) -> Chain:
        return self.chain

    def get_chain_info(self) -> ChainInfo:
        return get_chain(self.chain)

    def get_rpc_url(self) -> str:
        return self.config.rpc_url or self.get_chain_info().default_rpc_url(self.config.is_testnet)

    def is_testnet(self) -> bool:
        return self.config.is_testnet

    def format_amount(self, base_units: int | str) -> str:
        return from_base_units(base_units, self.get_chain_info().decimals)

    def parse_amount(self, amount: str | Decimal) -> int:
        return to_base_units(amount, self.get_chain_info().decimals)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        await self._on_connect()
        self._connected = True
        logger.debug(f"{self.chain.value} provider connected to {self.get_rpc_url()}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        await self._on_disconnect()

    async def _on_connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.get_rpc_url(),
            timeout=self.config.timeout,
            transport=self.config.transport,
        )

    async def _on_disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ProviderError(f"{self.chain.value} provider is not connected")
        return self._client

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        client = self._require_client()
        try:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"{self.chain.value} GET {path} failed: {exc}") from exc

    async def _get_text(self, path: str) -> str:
        client = self._require_client()
        try:
            resp = await client.get(path)
            resp.raise_for_status()
            return resp.text
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.chain.value} GET {path} failed: {exc}") from exc

    async def _post_json(self, path: str, payload: Any) -> Any:
        client = self._require_client()
        try:
            resp = await client.post(path, json=payload)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"{self.chain.value} POST {path} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Chain operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_balance(self, address: str) -> Balance: ...

    @abstractmethod
    async def send_transaction(
        self,
        from_address: str,
        request: TransactionRequest,
        signed: SignedTransaction | None = None,
    ) -> str:
        """Broadcast *signed* (a transaction from *from_address*) and return its hash."""

    @abstractmethod
    async def sign_transaction(
        self, request: TransactionRequest, private_key: str
    ) -> SignedTransaction: ...

    @abstractmethod
    async def get_transaction_history(self, address: str, limit: int = 10) -> list[Transaction]: ...

    @abstractmethod
    async def estimate_fee(self, request: TransactionRequest) -> str: ...

    @abstractmethod
    def validate_address(self, address: str) -> bool: ...

    @abstractmethod
    async def get_block_number(self) -> int: ...

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Transaction | None: ...

    def _unsupported(self, operation: str) -> ProviderError:
        return ProviderError(f"{operation} is not supported on {self.chain.value}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rpc_url={self.get_rpc_url()!r}, connected={self._connected})"
