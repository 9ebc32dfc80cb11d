"""Secret envelopes and a mock k-of-n signing path.

Secrets bound for the ledger are sealed with a fresh random key per secret
(AES-256-GCM or ChaCha20-Poly1305); the envelope is safe to store in an
untrusted place and the key is handed back to the caller separately.

The threshold path is a stand-in for a threshold signing service that does
not exist yet. Shares are derived from the wallet mnemonic with HKDF, which
is *not* a distributed key generation scheme, and the "combined" signature
is a hash of the partials. ``get_status()`` reports ``mode: "mock"``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import BaseModel, Field

from agent_vault.errors import DecryptionError, InsufficientThresholdError, SigningFailedError
from agent_vault.wallet.key_derivation import generate_seed_from_mnemonic, resolve_private_key
from agent_vault.wallet.models import OperationResult, TransactionRequest, WalletData
from agent_vault.wallet.providers.base import canonical_json
from agent_vault.wallet.providers.factory import create_provider

logger = logging.getLogger("agent_vault.wallet.vetkeys")

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


class EncryptionAlgorithm(str, Enum):
    AES_256_GCM = "aes-256-gcm"
    CHACHA20_POLY1305 = "chacha20-poly1305"

    def cipher(self, key: bytes) -> AESGCM | ChaCha20Poly1305:
        if self is EncryptionAlgorithm.AES_256_GCM:
            return AESGCM(key)
        return ChaCha20Poly1305(key)


class EncryptedSecret(BaseModel):
    """AEAD envelope. Holds no plaintext and no key."""

    id: str
    algorithm: EncryptionAlgorithm
    ciphertext: bytes
    iv: bytes
    tag: bytes
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))


@dataclass
class ThresholdSignatureResult:
    transaction_id: str
    success: bool
    threshold_met: bool = False
    signature: Optional[str] = None
    partial_signatures: list[str] = field(default_factory=list)
    share_metadata: list[dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


class VetKeysAdapter:
    def __init__(
        self,
        threshold: int = 2,
        total_parties: int = 3,
        encryption_algorithm: str | EncryptionAlgorithm = EncryptionAlgorithm.AES_256_GCM,
        dispatcher: Any | None = None,
    ) -> None:
        if threshold < 1 or total_parties < threshold:
            raise ValueError(
                f"Invalid threshold configuration: {threshold}-of-{total_parties}"
            )
        self.threshold = threshold
        self.total_parties = total_parties
        self.encryption_algorithm = EncryptionAlgorithm(encryption_algorithm)
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Envelopes
    # ------------------------------------------------------------------

    def encrypt_secret(
        self, plaintext: str, secret_id: str | None = None
    ) -> tuple[EncryptedSecret, bytes]:
        """Seal *plaintext* under a fresh random key.

        Returns the envelope and the key. The key is never stored in the
        envelope; losing it makes the secret unrecoverable.
        """
        key = os.urandom(KEY_SIZE)
        envelope = self._seal(plaintext.encode("utf-8"), key, secret_id)
        return envelope, key

    def _seal(self, data: bytes, key: bytes, secret_id: str | None = None) -> EncryptedSecret:
        iv = os.urandom(NONCE_SIZE)
        sealed = self.encryption_algorithm.cipher(key).encrypt(iv, data, None)
        return EncryptedSecret(
            id=secret_id or f"secret_{uuid.uuid4().hex}",
            algorithm=self.encryption_algorithm,
            ciphertext=sealed[:-TAG_SIZE],
            iv=iv,
            tag=sealed[-TAG_SIZE:],
        )

    def decrypt_secret(self, envelope: EncryptedSecret, key: bytes) -> str:
        """Open an envelope with its key.

        Raises
        ------
        DecryptionError
            Wrong key, malformed key, or a tampered envelope.
        """
        try:
            cipher = EncryptionAlgorithm(envelope.algorithm).cipher(key)
            plaintext = cipher.decrypt(envelope.iv, envelope.ciphertext + envelope.tag, None)
        except InvalidTag:
            raise DecryptionError(f"Cannot decrypt secret {envelope.id}: authentication failed") from None
        except ValueError as exc:
            raise DecryptionError(f"Cannot decrypt secret {envelope.id}: {exc}") from exc
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Threshold signing (mock)
    # ------------------------------------------------------------------

    def _derive_shares(self, mnemonic: str, transaction_id: str) -> list[bytes]:
        seed = generate_seed_from_mnemonic(mnemonic)
        shares = []
        for party in range(1, self.total_parties + 1):
            hkdf = HKDF(
                algorithm=hashes.SHA256(),
                length=KEY_SIZE,
                salt=transaction_id.encode("utf-8"),
                info=f"agent-vault/threshold-share/{party}".encode("ascii"),
            )
            shares.append(hkdf.derive(seed))
        return shares

    @staticmethod
    def _wrap_key(mnemonic: str) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=b"agent-vault/threshold-share-wrap",
        )
        return hkdf.derive(generate_seed_from_mnemonic(mnemonic))

    async def initiate_threshold_signature(
        self, transaction_id: str, wallet: WalletData, request: TransactionRequest
    ) -> ThresholdSignatureResult:
        """Start a signature for *request*.

        With ``threshold > 1`` this returns one partial signature per party
        plus encrypted share metadata; raw shares never leave this method.
        With ``threshold == 1`` the wallet's chain provider signs directly.
        """
        logger.info(f"Initiating threshold signature for {transaction_id}")
        if self.threshold == 1:
            return await self._sign_directly(transaction_id, wallet, request)

        if not wallet.mnemonic:
            raise SigningFailedError("Wallet mnemonic not available for threshold signing")

        try:
            shares = self._derive_shares(wallet.mnemonic, transaction_id)
            wrap_key = self._wrap_key(wallet.mnemonic)
        except Exception as exc:
            return ThresholdSignatureResult(
                transaction_id=transaction_id, success=False, error=str(exc)
            )

        payload = canonical_json(request.canonical_payload())
        partials = [hmac.new(share, payload, hashlib.sha256).hexdigest() for share in shares]
        metadata = []
        for party, share in enumerate(shares, start=1):
            envelope = self._seal(share, wrap_key, f"{transaction_id}/share-{party}")
            metadata.append(
                {
                    "party": party,
                    "commitment": hashlib.sha256(share).hexdigest(),
                    "encrypted_share": envelope.model_dump(),
                }
            )
        return ThresholdSignatureResult(
            transaction_id=transaction_id,
            success=True,
            threshold_met=len(partials) >= self.threshold,
            partial_signatures=partials,
            share_metadata=metadata,
        )

    async def _sign_directly(
        self, transaction_id: str, wallet: WalletData, request: TransactionRequest
    ) -> ThresholdSignatureResult:
        logger.info("Threshold is 1, using direct signing")
        if self.dispatcher is not None:
            provider = self.dispatcher.get_provider(wallet.chain)
        else:
            provider = create_provider(wallet.chain)
        signed = await provider.sign_transaction(request, resolve_private_key(wallet))
        return ThresholdSignatureResult(
            transaction_id=transaction_id,
            success=True,
            threshold_met=True,
            signature=signed.signature,
        )

    def combine_signatures(self, partial_signatures: list[str]) -> OperationResult:
        if len(partial_signatures) < self.threshold:
            error = InsufficientThresholdError(len(partial_signatures), self.threshold)
            logger.warning(str(error))
            return OperationResult.fail(str(error))
        combined = hashlib.sha256("".join(partial_signatures).encode("utf-8")).hexdigest()
        return OperationResult.ok(combined_signature=combined)

    def verify_signature(self, signature: str, request: TransactionRequest) -> bool:
        """Check a mock signature: sha256 of the canonical request payload."""
        expected = hashlib.sha256(canonical_json(request.canonical_payload())).hexdigest()
        if not isinstance(signature, str) or not signature.isascii():
            return False
        return hmac.compare_digest(expected, signature)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "threshold_supported": True,
            "current_threshold": self.threshold,
            "total_parties": self.total_parties,
            "encryption_algorithm": self.encryption_algorithm.value,
            "mode": "mock",
        }

    async def is_canister_connected(self) -> bool:
        logger.debug("Threshold signing canister not deployed, using mock mode")
        return False
