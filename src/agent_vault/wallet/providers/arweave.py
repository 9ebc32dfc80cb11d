"""Arweave provider: gateway HTTP API, RSA-PSS signing with the wallet JWK."""

from __future__ import annotations

import base64
import logging
import re
from datetime import datetime, timezone

import httpx
from Crypto.Hash import SHA256
from Crypto.Signature import pss

from agent_vault.errors import ProviderError
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.key_derivation import arweave_address, load_arweave_jwk
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest, TxStatus
from agent_vault.wallet.providers.base import BaseWalletProvider, canonical_json

logger = logging.getLogger("agent_vault.wallet.providers.arweave")

ADDRESS_RE = re.compile(r"^[a-zA-Z0-9_-]{43}$")
_DIGITS_RE = re.compile(r"^\d+$")


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


class ArweaveProvider(BaseWalletProvider):
    chain = Chain.ARWEAVE

    async def get_balance(self, address: str) -> Balance:
        winston = (await self._get_text(f"/wallet/{address}/balance")).strip()
        if not _DIGITS_RE.match(winston):
            raise ProviderError(f"arweave gateway returned a non-numeric balance: {winston[:40]!r}")
        return Balance(
            amount=self.format_amount(winston),
            denomination="AR",
            chain=self.chain,
            address=address,
        )

    async def get_block_number(self) -> int:
        text = (await self._get_text("/height")).strip()
        if not _DIGITS_RE.match(text):
            raise ProviderError(f"arweave gateway returned a non-numeric height: {text[:40]!r}")
        return int(text)

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        client = self._require_client()
        try:
            resp = await client.get(f"/tx/{tx_hash}")
        except httpx.HTTPError as exc:
            raise ProviderError(f"arweave transaction lookup failed: {exc}") from exc
        if resp.status_code in (202, 404):
            return None
        if resp.is_error:
            raise ProviderError(f"arweave transaction lookup failed: HTTP {resp.status_code}")
        data = resp.json()
        owner = data.get("owner") or ""
        return Transaction(
            hash=data.get("id") or tx_hash,
            from_address=self._owner_address(owner) if owner else "",
            to=data.get("target") or "",
            amount=self.format_amount(data.get("quantity") or "0"),
            chain=self.chain,
            timestamp=datetime.now(timezone.utc),
            status=TxStatus.CONFIRMED,
            fee=self.format_amount(data.get("reward") or "0"),
        )

    @staticmethod
    def _owner_address(owner: str) -> str:
        padded = owner + "=" * (-len(owner) % 4)
        return arweave_address(int.from_bytes(base64.urlsafe_b64decode(padded), "big"))

    async def get_transaction_history(self, address: str, limit: int = 10) -> list[Transaction]:
        return []

    def validate_address(self, address: str) -> bool:
        return isinstance(address, str) and bool(ADDRESS_RE.match(address))

    async def estimate_fee(self, request: TransactionRequest) -> str:
        return "0"

    async def sign_transaction(self, request: TransactionRequest, private_key: str) -> SignedTransaction:
        """RSA-PSS (SHA-256) over the canonical payload; the id is sha256(signature)."""
        key = load_arweave_jwk(private_key)
        payload = canonical_json({"owner": arweave_address(key.n), **request.canonical_payload()})
        signature = pss.new(key).sign(SHA256.new(payload))
        return SignedTransaction(
            signed_tx=payload.decode("utf-8"),
            signature=_b64url(signature),
            tx_hash=_b64url(SHA256.new(signature).digest()),
            request=request,
        )

    async def send_transaction(
        self,
        from_address: str,
        request: TransactionRequest,
        signed: SignedTransaction | None = None,
    ) -> str:
        raise self._unsupported("Sending transactions")
