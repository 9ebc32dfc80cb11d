"""
Tests for agent_vault.config.
"""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from agent_vault.config import (
    StorageConfig,
    VaultConfig,
    get_config_path,
    get_root_dir,
    load_config,
    save_config,
)


def write_yaml(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_empty_file_gives_defaults(self, tmp_path):
        config = load_config(write_yaml(tmp_path / "config.yaml", ""))
        assert config == VaultConfig()
        assert config.aggregator.max_concurrency == 5
        assert config.queue.max_retries == 3
        assert config.vetkeys.encryption_algorithm == "aes-256-gcm"

    def test_env_placeholders_are_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AGENT_VAULT_PASSWORD", "hunter2")
        monkeypatch.setenv("SOLANA_RPC", "https://sol.example")
        path = write_yaml(
            tmp_path / "config.yaml",
            "storage:\n"
            "  password: ${AGENT_VAULT_PASSWORD}\n"
            "network:\n"
            "  rpc_urls:\n"
            "    solana: ${SOLANA_RPC}\n"
            "    icp: ${UNSET_VARIABLE_FOR_TEST}\n",
        )
        monkeypatch.delenv("UNSET_VARIABLE_FOR_TEST", raising=False)

        config = load_config(path)

        assert config.storage.password == "hunter2"
        assert config.network.rpc_urls["solana"] == "https://sol.example"
        assert config.network.rpc_urls["icp"] == "${UNSET_VARIABLE_FOR_TEST}"

    def test_log_level_is_normalized(self, tmp_path):
        config = load_config(write_yaml(tmp_path / "config.yaml", "log_level: debug\n"))
        assert config.log_level == "DEBUG"

    def test_unknown_log_level(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(write_yaml(tmp_path / "config.yaml", "log_level: chatty\n"))

    def test_bounds_are_validated(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(write_yaml(tmp_path / "config.yaml", "aggregator:\n  max_concurrency: 0\n"))
        with pytest.raises(ValidationError):
            load_config(write_yaml(tmp_path / "config.yaml", "vetkeys:\n  encryption_algorithm: des\n"))


class TestSaveConfig:
    def test_round_trip_without_password(self, tmp_path):
        config = VaultConfig.model_validate(
            {
                "storage": {"base_dir": str(tmp_path / "wallets"), "password": "hunter2"},
                "network": {"is_testnet": True, "rpc_urls": {"eth": "http://localhost:8545"}},
                "queue": {"max_retries": 5},
            }
        )
        path = tmp_path / "nested" / "config.yaml"

        save_config(config, path)

        assert "hunter2" not in path.read_text(encoding="utf-8")
        assert "password" not in yaml.safe_load(path.read_text(encoding="utf-8"))["storage"]
        loaded = load_config(path)
        assert loaded.storage.password is None
        assert loaded.network == config.network
        assert loaded.queue.max_retries == 5


class TestPaths:
    def test_root_and_config_path(self, tmp_path):
        assert get_root_dir(tmp_path) == tmp_path / ".agent-vault"
        assert get_config_path(tmp_path) == tmp_path / ".agent-vault" / "config.yaml"

    def test_root_defaults_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert get_root_dir() == tmp_path / ".agent-vault"

    def test_wallet_dir_resolution(self, tmp_path, monkeypatch):
        monkeypatch.delenv("AGENT_VAULT_WALLET_DIR", raising=False)
        assert StorageConfig().resolve_base_dir() == Path("~/.agent-vault/wallets").expanduser()

        monkeypatch.setenv("AGENT_VAULT_WALLET_DIR", str(tmp_path / "from-env"))
        assert StorageConfig().resolve_base_dir() == tmp_path / "from-env"

        explicit = StorageConfig(base_dir=str(tmp_path / "explicit"))
        assert explicit.resolve_base_dir() == tmp_path / "explicit"
