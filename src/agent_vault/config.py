"""Configuration system for Agent Vault.

Loads vault config from `.agent-vault/config.yaml` and expands environment
variable placeholders before validation.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_WALLET_DIR = "AGENT_VAULT_WALLET_DIR"
DEFAULT_WALLET_DIR = "~/.agent-vault/wallets"


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class StorageConfig(BaseModel):
    """Where wallet records live and how their secrets are protected."""

    base_dir: Optional[str] = None   # falls back to $AGENT_VAULT_WALLET_DIR, then ~/.agent-vault/wallets
    password: Optional[str] = None   # ${AGENT_VAULT_PASSWORD}; enables at-rest encryption
    kdf_iterations: int = 600_000

    def resolve_base_dir(self) -> Path:
        raw = self.base_dir or os.environ.get(ENV_WALLET_DIR) or DEFAULT_WALLET_DIR
        return Path(raw).expanduser()


class NetworkConfig(BaseModel):
    """Chain RPC settings."""

    is_testnet: bool = False
    rpc_urls: dict[str, str] = Field(default_factory=dict)  # chain tag or alias -> URL
    request_timeout: float = 30.0


class AggregatorConfig(BaseModel):
    max_concurrency: int = Field(default=5, ge=1)
    timeout: float = 30.0            # seconds per action
    continue_on_error: bool = True


class QueueConfig(BaseModel):
    max_retries: int = Field(default=3, ge=1)
    agent_id: Optional[str] = None   # restrict wallet lookup to one agent


class VetKeysConfig(BaseModel):
    threshold: int = Field(default=2, ge=1)
    total_parties: int = Field(default=3, ge=1)
    encryption_algorithm: Literal["aes-256-gcm", "chacha20-poly1305"] = "aes-256-gcm"


class LedgerConfig(BaseModel):
    canister_id: Optional[str] = None


class VaultConfig(BaseModel):
    """Root configuration object."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    vetkeys: VetKeysConfig = Field(default_factory=VetKeysConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.agent-vault/`` root directory (no auto-create).

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the root folder.
        Defaults to the current working directory.
    """
    if base is None:
        base = Path.cwd()
    return base / ".agent-vault"


def get_config_path(base: Path | None = None) -> Path:
    return get_root_dir(base) / "config.yaml"


def load_config(path: Path) -> VaultConfig:
    """Load and validate a vault configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return VaultConfig.model_validate(expanded)


def save_config(config: VaultConfig, path: Path) -> None:
    """Serialize a :class:`VaultConfig` to a YAML file.

    The storage password is never written out; keep it in the environment
    and reference it as ``${AGENT_VAULT_PASSWORD}``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    data.get("storage", {}).pop("password", None)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
