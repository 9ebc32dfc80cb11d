"""Polkadot provider backed by a Substrate API Sidecar REST endpoint."""

from __future__ import annotations

import hashlib
import logging

from nacl.signing import SigningKey

from agent_vault.wallet.chains import Chain
from agent_vault.wallet.key_derivation import decode_private_key_bytes, ss58_decode, ss58_encode
from agent_vault.wallet.models import Balance, SignedTransaction, Transaction, TransactionRequest
from agent_vault.wallet.providers.base import BaseWalletProvider, canonical_json

logger = logging.getLogger("agent_vault.wallet.providers.polkadot")

ESTIMATED_FEE_DOT = "0.0156"


class PolkadotProvider(BaseWalletProvider):
    """Balances and block height via Sidecar; transfers are signed, not broadcast."""

    chain = Chain.POLKADOT

    async def get_balance(self, address: str) -> Balance:
        data = await self._get_json(f"/accounts/{address}/balance-info")
        height = (data.get("at") or {}).get("height")
        return Balance(
            amount=self.format_amount(data.get("free", "0")),
            denomination="DOT",
            chain=self.chain,
            address=address,
            block_number=int(height) if height is not None else None,
        )

    async def get_block_number(self) -> int:
        data = await self._get_json("/blocks/head")
        return int(data["number"])

    async def get_transaction_history(self, address: str, limit: int = 10) -> list[Transaction]:
        # Sidecar has no account history index.
        return []

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        return None

    def validate_address(self, address: str) -> bool:
        try:
            ss58_decode(address)
        except ValueError:
            return False
        return True

    async def estimate_fee(self, request: TransactionRequest) -> str:
        return ESTIMATED_FEE_DOT

    async def sign_transaction(self, request: TransactionRequest, private_key: str) -> SignedTransaction:
        """Sign the canonical transfer payload with the account's ed25519 key."""
        signing_key = SigningKey(decode_private_key_bytes(private_key))
        signer = ss58_encode(bytes(signing_key.verify_key))
        payload = canonical_json({"signer": signer, **request.canonical_payload()})
        signature = signing_key.sign(payload).signature
        tx_hash = hashlib.blake2b(payload + signature, digest_size=32).hexdigest()
        return SignedTransaction(
            signed_tx="0x" + payload.hex(),
            signature="0x" + signature.hex(),
            tx_hash="0x" + tx_hash,
            request=request,
        )

    async def send_transaction(
        self,
        from_address: str,
        request: TransactionRequest,
        signed: SignedTransaction | None = None,
    ) -> str:
        raise self._unsupported("Sending transactions")
