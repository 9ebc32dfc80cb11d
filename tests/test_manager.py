"""
Tests for agent_vault.wallet.manager.WalletManager.
"""
from __future__ import annotations

import re

import pytest

from agent_vault.errors import KeyDerivationError, WalletNotFoundError
from agent_vault.ledger.models import WalletStatus
from agent_vault.wallet.chains import Chain
from agent_vault.wallet.manager import CANISTER_UNAVAILABLE, WalletManager
from agent_vault.wallet.models import CreationMethod

from conftest import ETH_KEY, TEST_MNEMONIC

ICP_PRINCIPAL_RE = re.compile(r"^[a-z0-9]{5}(-[a-z0-9]{3,5})+$")
ARWEAVE_ADDRESS_RE = re.compile(r"^[a-zA-Z0-9_-]{43}$")


class TestWalletCreation:
    def test_agent_scenario(self, manager):
        """ICP and Arweave wallets for one agent; re-importing a mnemonic is stable."""
        icp = manager.generate_wallet("agent-1", "icp")
        assert icp.chain is Chain.ICP
        assert ICP_PRINCIPAL_RE.match(icp.address)

        arweave = manager.generate_wallet("agent-1", "arweave")
        assert arweave.chain is Chain.ARWEAVE
        assert ARWEAVE_ADDRESS_RE.match(arweave.address)

        first = manager.import_wallet_from_mnemonic("agent-1", "icp", TEST_MNEMONIC)
        second = manager.import_wallet_from_mnemonic("agent-1", "icp", TEST_MNEMONIC)
        assert first.address == second.address
        assert first.id != second.id
        assert len(manager.list_agent_wallets("agent-1")) == 4

    def test_private_key_import_keeps_key(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        assert wallet.chain is Chain.CKETH
        assert wallet.creation_method is CreationMethod.PRIVATE_KEY
        assert wallet.private_key == ETH_KEY
        assert wallet.mnemonic is None
        assert wallet.id.startswith("wallet-")

    def test_seed_import_keeps_only_mnemonic(self, manager):
        wallet = manager.import_wallet_from_seed("agent-1", "sol", "  " + TEST_MNEMONIC + "  ")
        assert wallet.mnemonic == TEST_MNEMONIC
        assert wallet.private_key is None
        assert wallet.derivation_path == "m/44'/501'/0'/0'"

    def test_generated_wallet_persists(self, manager):
        wallet = manager.generate_wallet("agent-1", "polkadot")
        assert manager.validate_seed_phrase(wallet.mnemonic)
        assert manager.get_wallet("agent-1", wallet.id) == wallet
        assert manager.has_wallet("agent-1", wallet.id)

    def test_explicit_wallet_id(self, manager):
        wallet = manager.create_wallet(
            "agent-1", "cketh", "private-key", private_key=ETH_KEY, wallet_id="treasury"
        )
        assert wallet.id == "treasury"
        assert manager.list_agent_wallets("agent-1") == ["treasury"]

    def test_bad_material_saves_nothing(self, manager):
        with pytest.raises(KeyDerivationError):
            manager.import_wallet_from_seed("agent-1", "icp", "abandon " * 12)
        assert manager.list_agent_wallets("agent-1") == []


class TestWalletQueries:
    def test_missing_wallet_is_none(self, manager):
        assert manager.get_wallet("agent-1", "nope") is None
        assert manager.find_wallet("nope") is None
        assert not manager.has_wallet("agent-1", "nope")

    def test_find_wallet_across_agents(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-2", "eth", ETH_KEY)
        manager.generate_wallet("agent-1", "solana")
        assert manager.find_wallet(wallet.id) == wallet

    def test_load_agent_wallets(self, manager):
        a = manager.generate_wallet("agent-1", "solana")
        b = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        loaded = {w.id: w for w in manager.load_agent_wallets("agent-1")}
        assert loaded == {a.id: a, b.id: b}


class TestWalletMutations:
    def test_update_metadata(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        updated = manager.update_wallet("agent-1", wallet.id, chain_metadata={"label": "ops"})
        assert updated.chain_metadata == {"label": "ops"}
        assert updated.updated_at >= wallet.updated_at
        assert manager.get_wallet("agent-1", wallet.id).chain_metadata == {"label": "ops"}

    def test_update_rejects_immutable_fields(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        with pytest.raises(ValueError):
            manager.update_wallet("agent-1", wallet.id, address="0x0")

    def test_update_missing_wallet(self, manager):
        with pytest.raises(WalletNotFoundError):
            manager.update_wallet("agent-1", "nope", chain_metadata={})

    def test_remove_purges_connection_cache(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        manager.cache_wallet_connection("agent-1", wallet.id, object())
        manager.remove_wallet("agent-1", wallet.id)
        assert manager.get_cached_connection("agent-1", wallet.id) is None
        assert manager.get_wallet("agent-1", wallet.id) is None

    def test_remove_missing_wallet(self, manager):
        with pytest.raises(WalletNotFoundError, match="Wallet not found: nope"):
            manager.remove_wallet("agent-1", "nope")

    def test_clear_agent_wallets(self, manager):
        a = manager.generate_wallet("agent-1", "solana")
        manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        other = manager.import_wallet_from_private_key("agent-2", "eth", ETH_KEY)
        manager.cache_wallet_connection("agent-1", a.id, "conn")
        assert manager.clear_agent_wallets("agent-1") == 2
        assert manager.list_agent_wallets("agent-1") == []
        assert manager.get_cached_connection("agent-1", a.id) is None
        assert manager.has_wallet("agent-2", other.id)

    def test_connection_cache_is_per_manager(self, storage):
        first, second = WalletManager(storage), WalletManager(storage)
        first.cache_wallet_connection("agent-1", "w", "conn")
        assert first.get_cached_connection("agent-1", "w") == "conn"
        assert second.get_cached_connection("agent-1", "w") is None
        first.clear_cached_connection("agent-1", "w")
        assert first.get_cached_connection("agent-1", "w") is None


class TestLedgerSync:
    async def test_sync_without_ledger(self, manager):
        wallet = manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        result = await manager.sync_wallet_to_canister("agent-1", wallet.id)
        assert not result.success
        assert result.error == CANISTER_UNAVAILABLE
        assert manager.has_wallet("agent-1", wallet.id)

    async def test_sync_sends_public_fields_only(self, synced_manager, ledger):
        wallet = synced_manager.generate_wallet("agent-1", "icp")
        result = await synced_manager.sync_wallet_to_canister("agent-1", wallet.id)
        assert result.success
        assert result.data["wallet_id"] == wallet.id

        (payload,) = ledger.calls_to("registerWallet")[0]
        assert set(payload) == {"id", "agentId", "chain", "address", "registeredAt", "status"}
        assert payload["status"] == {"active": None}
        assert payload["address"] == wallet.address
        assert wallet.mnemonic not in repr(ledger.calls)

    async def test_sync_missing_wallet(self, synced_manager):
        result = await synced_manager.sync_wallet_to_canister("agent-1", "nope")
        assert not result.success
        assert result.error == "Wallet not found"

    async def test_sync_agent_wallets_reports_each_wallet(self, synced_manager, ledger):
        a = synced_manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        b = synced_manager.generate_wallet("agent-1", "solana")
        report = await synced_manager.sync_agent_wallets("agent-1")
        assert sorted(report["synced"]) == sorted([a.id, b.id])
        assert report["failed"] == []

        ledger.broken.add("registerWallet")
        report = await synced_manager.sync_agent_wallets("agent-1")
        assert report["synced"] == []
        assert {f["wallet_id"] for f in report["failed"]} == {a.id, b.id}
        assert all("ledger unreachable" in f["error"] for f in report["failed"])

    async def test_sync_status(self, synced_manager, ledger):
        wallet = synced_manager.import_wallet_from_private_key("agent-1", "eth", ETH_KEY)
        status = await synced_manager.get_wallet_sync_status("agent-1", wallet.id)
        assert status.local_exists and not status.in_canister and not status.synced

        await synced_manager.sync_wallet_to_canister("agent-1", wallet.id)
        status = await synced_manager.get_wallet_sync_status("agent-1", wallet.id)
        assert status.synced
        assert status.canister_status.status is WalletStatus.ACTIVE
        assert status.canister_status.agent_id == "agent-1"

    async def test_list_canister_wallets(self, synced_manager):
        wallet = synced_manager.generate_wallet("agent-1", "solana")
        await synced_manager.sync_wallet_to_canister("agent-1", wallet.id)
        listed = await synced_manager.list_canister_wallets("agent-1")
        assert [w.id for w in listed] == [wallet.id]
        assert await synced_manager.list_canister_wallets("agent-2") == []

    async def test_status_update_and_deregister(self, synced_manager, ledger):
        wallet = synced_manager.generate_wallet("agent-1", "solana")
        await synced_manager.sync_wallet_to_canister("agent-1", wallet.id)

        result = await synced_manager.update_canister_wallet_status(wallet.id, "inactive")
        assert result.success
        assert ledger.wallets[wallet.id]["status"] == {"inactive": None}

        assert (await synced_manager.deregister_wallet_from_canister(wallet.id)).success
        again = await synced_manager.deregister_wallet_from_canister(wallet.id)
        assert not again.success
        assert again.error == "Wallet not found"

    async def test_invalid_status(self, synced_manager):
        result = await synced_manager.update_canister_wallet_status("w", "frozen")
        assert not result.success

    async def test_ledger_outage_never_raises(self, synced_manager, ledger):
        ledger.broken.update({"getWallet", "listWallets", "deregisterWallet"})
        wallet = synced_manager.generate_wallet("agent-1", "solana")
        status = await synced_manager.get_wallet_sync_status("agent-1", wallet.id)
        assert status.local_exists and not status.in_canister
        assert await synced_manager.list_canister_wallets("agent-1") == []
        assert not (await synced_manager.deregister_wallet_from_canister(wallet.id)).success


class TestManagerErrorPaths:
    def test_unknown_creation_method(self, manager):
        with pytest.raises(KeyDerivationError) as exc_info:
            manager.create_wallet("agent-1", "cketh", "brainwallet", seed_phrase=TEST_MNEMONIC)
        assert exc_info.value.reason == "unsupported_method"
        assert manager.list_agent_wallets("agent-1") == []

    async def test_ledger_raising_synchronously(self, storage, ledger):
        def explode(*args):
            raise ConnectionError("actor not initialised")

        ledger.deregisterWallet = explode
        ledger.updateWalletStatus = explode
        synced = WalletManager(storage, ledger)

        result = await synced.deregister_wallet_from_canister("w")
        assert not result.success
        assert result.error == "actor not initialised"
        assert not (await synced.update_canister_wallet_status("w", "inactive")).success
