"""ICP provider: balances from the public ledger API, secp256k1 signing."""

from __future__ import annotations

import hashlib
import logging
import os
import re

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from agent_vault.errors import ProviderError
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.key_derivation import decode_private_key_bytes, icp_principal, secp256k1_private_key
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest
from agent_vault.wallet.providers.base import BaseWalletProvider, canonical_json

logger = logging.getLogger("agent_vault.wallet.providers.icp")

ENV_LEDGER_API_URL = "ICP_LEDGER_API_URL"
TRANSFER_FEE_ICP = "0.0001"
PRINCIPAL_RE = re.compile(r"^[a-z0-9]{5}(-[a-z0-9]{3,5})+$")
_DIGITS_RE = re.compile(r"^\d+$")


class IcpProvider(BaseWalletProvider):
    chain = Chain.ICP

    def get_rpc_url(self) -> str:
        return (
            self.config.rpc_url
            or os.environ.get(ENV_LEDGER_API_URL)
            or self.get_chain_info().default_rpc_url(self.config.is_testnet)
        ).rstrip("/")

    async def get_balance(self, address: str) -> Balance:
        client = self._require_client()
        try:
            resp = await client.get(f"/accounts/{address}/balance")
        except httpx.HTTPError as exc:
            raise ProviderError(f"icp balance lookup failed: {exc}") from exc
        return Balance(
            amount=self._parse_balance(resp),
            denomination="ICP",
            chain=self.chain,
            address=address,
        )

    def _parse_balance(self, resp: httpx.Response) -> str:
        if resp.status_code == 404:
            return "0"
        if resp.is_error:
            raise ProviderError(f"icp balance lookup failed: HTTP {resp.status_code}")
        if "application/json" in resp.headers.get("content-type", ""):
            data = resp.json()
            if isinstance(data, dict):
                if "e8s" in data:
                    return self.format_amount(data["e8s"])
                for key in ("balance", "amount"):
                    if isinstance(data.get(key), str):
                        return data[key]
            return "0"
        text = resp.text.strip()
        return self.format_amount(text) if _DIGITS_RE.match(text) else "0"

    async def get_transaction_history(self, address: str, limit: int = 10) -> list[Transaction]:
        return []

    async def get_block_number(self) -> int:
        return 0

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        return None

    def validate_address(self, address: str) -> bool:
        return isinstance(address, str) and bool(PRINCIPAL_RE.match(address))

    async def estimate_fee(self, request: TransactionRequest) -> str:
        return TRANSFER_FEE_ICP

    async def sign_transaction(self, request: TransactionRequest, private_key: str) -> SignedTransaction:
        """ECDSA/SHA-256 signature over the canonical transfer payload."""
        key = decode_private_key_bytes(private_key)
        payload = canonical_json({"signer": icp_principal(key), **request.canonical_payload()})
        signature = secp256k1_private_key(key).sign(payload, ec.ECDSA(hashes.SHA256()))
        return SignedTransaction(
            signed_tx=payload.decode("utf-8"),
            signature=signature.hex(),
            tx_hash=hashlib.sha256(signature).hexdigest(),
            request=request,
        )

    async def send_transaction(
        self,
        from_address: str,
        request: TransactionRequest,
        signed: SignedTransaction | None = None,
    ) -> str:
        raise self._unsupported("Sending transactions")
