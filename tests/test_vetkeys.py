"""
Tests for agent_vault.wallet.vetkeys.VetKeysAdapter.
"""
from __future__ import annotations

import hashlib

import pytest

from agent_vault.errors import DecryptionError, SigningFailedError
from agent_vault.wallet.models import TransactionRequest
from agent_vault.wallet.providers.base import canonical_json
from agent_vault.wallet.vetkeys import EncryptionAlgorithm, VetKeysAdapter

from conftest import ETH_KEY

REQUEST = TransactionRequest(to="recipient", amount="0.5", chain="solana")


class TestEnvelopes:
    @pytest.mark.parametrize("algorithm", ["aes-256-gcm", "chacha20-poly1305"])
    def test_round_trip(self, algorithm):
        adapter = VetKeysAdapter(encryption_algorithm=algorithm)
        envelope, key = adapter.encrypt_secret("seed words go here")

        assert envelope.algorithm is EncryptionAlgorithm(algorithm)
        assert envelope.id.startswith("secret_")
        assert len(envelope.iv) == 12 and len(envelope.tag) == 16
        assert b"seed words" not in envelope.ciphertext
        assert adapter.decrypt_secret(envelope, key) == "seed words go here"

    def test_explicit_id_and_fresh_keys(self):
        adapter = VetKeysAdapter()
        first, key_a = adapter.encrypt_secret("same", secret_id="wallet-1")
        second, key_b = adapter.encrypt_secret("same")
        assert first.id == "wallet-1"
        assert key_a != key_b
        assert first.ciphertext != second.ciphertext

    def test_wrong_key(self):
        adapter = VetKeysAdapter()
        envelope, _ = adapter.encrypt_secret("secret")
        with pytest.raises(DecryptionError):
            adapter.decrypt_secret(envelope, bytes(32))

    def test_malformed_key(self):
        adapter = VetKeysAdapter()
        envelope, _ = adapter.encrypt_secret("secret")
        with pytest.raises(DecryptionError):
            adapter.decrypt_secret(envelope, b"short")

    def test_tampered_tag(self):
        adapter = VetKeysAdapter()
        envelope, key = adapter.encrypt_secret("secret")
        tampered = envelope.model_copy(update={"tag": bytes(16)})
        with pytest.raises(DecryptionError):
            adapter.decrypt_secret(tampered, key)

    def test_envelope_decrypts_under_its_own_algorithm(self):
        envelope, key = VetKeysAdapter(encryption_algorithm="chacha20-poly1305").encrypt_secret("x")
        assert VetKeysAdapter().decrypt_secret(envelope, key) == "x"


class TestThresholdSigning:
    async def test_partials_for_every_party(self, manager):
        wallet = manager.generate_wallet("agent-1", "solana")
        adapter = VetKeysAdapter(threshold=2, total_parties=3)

        result = await adapter.initiate_threshold_signature("tx-1", wallet, REQUEST)

        assert result.success and result.threshold_met
        assert len(result.partial_signatures) == 3
        assert len(set(result.partial_signatures)) == 3
        assert [m["party"] for m in result.share_metadata] == [1, 2, 3]
        assert result.signature is None

    async def test_partials_are_deterministic(self, manager):
        wallet = manager.generate_wallet("agent-1", "solana")
        adapter = VetKeysAdapter()
        first = await adapter.initiate_threshold_signature("tx-1", wallet, REQUEST)
        second = await adapter.initiate_threshold_signature("tx-1", wallet, REQUEST)
        other = await adapter.initiate_threshold_signature("tx-2", wallet, REQUEST)
        assert first.partial_signatures == second.partial_signatures
        assert first.partial_signatures != other.partial_signatures

    async def test_metadata_holds_no_raw_shares(self, manager):
        wallet = manager.generate_wallet("agent-1", "solana")
        result = await VetKeysAdapter().initiate_threshold_signature("tx-1", wallet, REQUEST)
        for entry in result.share_metadata:
            assert set(entry) == {"party", "commitment", "encrypted_share"}
            assert set(entry["encrypted_share"]) == {
                "id", "algorithm", "ciphertext", "iv", "tag", "created_at"
            }
        assert wallet.mnemonic not in repr(result)

    async def test_requires_mnemonic(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        with pytest.raises(SigningFailedError):
            await VetKeysAdapter().initiate_threshold_signature("tx-1", wallet, REQUEST)

    async def test_threshold_of_one_signs_directly(self, manager, dispatcher):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        request = TransactionRequest(to="0xabc", amount="1", chain="cketh")
        adapter = VetKeysAdapter(threshold=1, total_parties=1, dispatcher=dispatcher)

        result = await adapter.initiate_threshold_signature("tx-1", wallet, request)

        expected = await dispatcher.get_provider("cketh").sign_transaction(request, ETH_KEY)
        assert result.success and result.threshold_met
        assert result.signature == expected.signature
        assert result.partial_signatures == []


class TestCombineAndVerify:
    def test_insufficient_partials(self):
        result = VetKeysAdapter(threshold=2).combine_signatures(["only-one"])
        assert not result.success
        assert result.error == "Insufficient signatures: 1/2 required"

    def test_combine(self):
        result = VetKeysAdapter(threshold=2).combine_signatures(["a", "b", "c"])
        assert result.success
        assert result.data["combined_signature"] == hashlib.sha256(b"abc").hexdigest()

    def test_verify_signature(self):
        adapter = VetKeysAdapter()
        good = hashlib.sha256(canonical_json(REQUEST.canonical_payload())).hexdigest()
        assert adapter.verify_signature(good, REQUEST)
        assert not adapter.verify_signature("0" * 64, REQUEST)
        assert not adapter.verify_signature("sïg", REQUEST)


class TestStatus:
    def test_reports_mock_mode(self):
        status = VetKeysAdapter(threshold=3, total_parties=5).get_status()
        assert status["mode"] == "mock"
        assert (status["current_threshold"], status["total_parties"]) == (3, 5)
        assert status["encryption_algorithm"] == "aes-256-gcm"

    async def test_canister_not_connected(self):
        assert await VetKeysAdapter().is_canister_connected() is False

    @pytest.mark.parametrize("threshold, total", [(0, 3), (4, 3), (-1, 1)])
    def test_invalid_configuration(self, threshold, total):
        with pytest.raises(ValueError):
            VetKeysAdapter(threshold=threshold, total_parties=total)

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            VetKeysAdapter(encryption_algorithm="rot13")
