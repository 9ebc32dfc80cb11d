"""Per-agent on-disk wallet storage.

Layout::

    <base_dir>/<agent_id>/<wallet_id>.cbor

Every file holds one CBOR wallet record. When the storage is opened with a
password, the private key and mnemonic fields are sealed individually
before they touch the disk.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import cbor2

from agent_vault.errors import CorruptedWalletRecord
from agent_vault.wallet import secretbox, serializer
from agent_vault.wallet.models import WalletData

logger = logging.getLogger("agent_vault.wallet.storage")

WALLET_SUFFIX = ".cbor"
BACKUP_VERSION = 1
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def _is_safe_id(value: object) -> bool:
    return isinstance(value, str) and bool(_SAFE_ID_RE.match(value)) and ".." not in value


def _check_id(value: str, kind: str) -> str:
    if not _is_safe_id(value):
        raise ValueError(f"Invalid {kind}: {value!r}")
    return value


class WalletStorage:
    """Load and persist wallet records under an agent-scoped directory tree."""

    def __init__(
        self,
        base_dir: Path | str,
        password: str | None = None,
        kdf_iterations: int = secretbox.DEFAULT_KDF_ITERATIONS,
    ) -> None:
        self.base_dir = Path(base_dir).expanduser()
        self._password = password
        self.kdf_iterations = kdf_iterations

    @property
    def encrypted(self) -> bool:
        return bool(self._password)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def ensure_directories(self, agent_id: str | None = None) -> Path:
        """Create the base directory (and the agent's directory if given)."""
        target = self.base_dir if agent_id is None else self._agent_dir(agent_id)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def _agent_dir(self, agent_id: str) -> Path:
        return self.base_dir / _check_id(agent_id, "agent id")

    def _wallet_path(self, agent_id: str, wallet_id: str) -> Path:
        return self._agent_dir(agent_id) / f"{_check_id(wallet_id, 'wallet id')}{WALLET_SUFFIX}"

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def save(self, wallet: WalletData) -> Path:
        """Write *wallet* to disk, replacing any existing record."""
        path = self._wallet_path(wallet.agent_id, wallet.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        raw = serializer.encode_wallet(wallet, self._password, self.kdf_iterations)
        tmp = path.with_suffix(WALLET_SUFFIX + ".tmp")
        tmp.write_bytes(raw)
        tmp.replace(path)
        logger.debug(f"Saved wallet {wallet.id} for agent {wallet.agent_id}")
        return path

    def load(self, agent_id: str, wallet_id: str) -> WalletData | None:
        """Load a wallet, or ``None`` if no record exists.

        Raises
        ------
        CorruptedWalletRecord
            If the file exists but cannot be decoded.
        DecryptionError
            If the record's secrets cannot be opened with this storage's password.
        """
        path = self._wallet_path(agent_id, wallet_id)
        if not path.is_file():
            return None
        try:
            wallet = serializer.decode_wallet(path.read_bytes(), self._password)
        except CorruptedWalletRecord as exc:
            raise CorruptedWalletRecord(f"{path}: {exc}") from exc
        if wallet.id != wallet_id or wallet.agent_id != agent_id:
            raise CorruptedWalletRecord(
                f"{path}: record belongs to {wallet.agent_id}/{wallet.id}"
            )
        return wallet

    def delete(self, agent_id: str, wallet_id: str) -> bool:
        """Delete a wallet file. Returns ``False`` if it did not exist."""
        path = self._wallet_path(agent_id, wallet_id)
        if not path.is_file():
            return False
        path.unlink()
        logger.debug(f"Deleted wallet {wallet_id} for agent {agent_id}")
        return True

    def exists(self, agent_id: str, wallet_id: str) -> bool:
        return self._wallet_path(agent_id, wallet_id).is_file()

    def list_wallets(self, agent_id: str) -> list[str]:
        """Return the wallet ids stored for *agent_id*, sorted."""
        agent_dir = self._agent_dir(agent_id)
        if not agent_dir.is_dir():
            return []
        return sorted(
            p.stem
            for p in agent_dir.glob(f"*{WALLET_SUFFIX}")
            if p.is_file() and _is_safe_id(p.stem)
        )

    def list_agents(self) -> list[str]:
        """Return every agent id that has a directory under the base dir.

        Directories whose names are not valid agent ids (``.trash``,
        ``lost+found``) are ignored.
        """
        if not self.base_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.base_dir.iterdir() if p.is_dir() and _is_safe_id(p.name)
        )

    def clear_wallets(self, agent_id: str) -> int:
        """Delete every wallet of *agent_id* and return how many were removed."""
        removed = 0
        for wallet_id in self.list_wallets(agent_id):
            if self.delete(agent_id, wallet_id):
                removed += 1
        agent_dir = self._agent_dir(agent_id)
        if agent_dir.is_dir() and not any(agent_dir.iterdir()):
            agent_dir.rmdir()
        return removed

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_storage_size(self) -> int:
        """Total bytes used by wallet files."""
        if not self.base_dir.is_dir():
            return 0
        return sum(p.stat().st_size for p in self.base_dir.glob(f"*/*{WALLET_SUFFIX}") if p.is_file())

    def get_wallet_stats(self) -> dict[str, Any]:
        """Counts per agent and per chain, plus total size on disk.

        Unreadable records are counted under ``corrupted`` rather than raised.
        """
        by_agent: dict[str, int] = {}
        by_chain: dict[str, int] = {}
        corrupted = 0
        for agent_id in self.list_agents():
            wallet_ids = self.list_wallets(agent_id)
            by_agent[agent_id] = len(wallet_ids)
            for wallet_id in wallet_ids:
                path = self._wallet_path(agent_id, wallet_id)
                try:
                    data = serializer.peek_wallet(path.read_bytes())
                except CorruptedWalletRecord:
                    corrupted += 1
                    continue
                chain = str(data.get("chain", "unknown"))
                by_chain[chain] = by_chain.get(chain, 0) + 1
        return {
            "total_agents": len(by_agent),
            "total_wallets": sum(by_agent.values()),
            "wallets_by_agent": by_agent,
            "wallets_by_chain": by_chain,
            "corrupted": corrupted,
            "storage_bytes": self.get_storage_size(),
        }

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def backup_wallets(self, agent_id: str, backup_path: Path | str) -> int:
        """Export every wallet file of *agent_id* into a single CBOR archive.

        Records are copied byte-for-byte, so sealed secrets stay sealed.
        Returns the number of wallets written.
        """
        records = {
            wallet_id: self._wallet_path(agent_id, wallet_id).read_bytes()
            for wallet_id in self.list_wallets(agent_id)
        }
        archive = {
            "version": BACKUP_VERSION,
            "type": "wallet_backup",
            "agent_id": agent_id,
            "wallets": records,
        }
        target = Path(backup_path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(cbor2.dumps(archive))
        logger.info(f"Backed up {len(records)} wallet(s) for agent {agent_id} to {target}")
        return len(records)

    def restore_wallets(self, backup_path: Path | str, overwrite: bool = False) -> int:
        """Import a backup written by :meth:`backup_wallets`.

        Existing wallets are kept unless *overwrite* is set. Returns the
        number of wallets written.
        """
        source = Path(backup_path).expanduser()
        try:
            archive = cbor2.loads(source.read_bytes())
        except (cbor2.CBORDecodeError, ValueError, TypeError) as exc:
            raise CorruptedWalletRecord(f"{source}: invalid backup archive: {exc}") from exc
        if (
            not isinstance(archive, dict)
            or archive.get("type") != "wallet_backup"
            or archive.get("version") != BACKUP_VERSION
            or not isinstance(archive.get("wallets"), dict)
        ):
            raise CorruptedWalletRecord(f"{source}: not a wallet backup archive")

        agent_id = _check_id(archive.get("agent_id"), "agent id")
        for wallet_id, raw in archive["wallets"].items():
            if not _is_safe_id(wallet_id) or not isinstance(raw, bytes):
                raise CorruptedWalletRecord(f"{source}: wallet {wallet_id!r} is not a valid record")
            try:
                data = serializer.peek_wallet(raw)
            except CorruptedWalletRecord as exc:
                raise CorruptedWalletRecord(f"{source}: wallet {wallet_id!r}: {exc}") from exc
            if data.get("id") != wallet_id or data.get("agent_id") != agent_id:
                raise CorruptedWalletRecord(
                    f"{source}: wallet {wallet_id!r} holds a record for "
                    f"{data.get('agent_id')}/{data.get('id')}"
                )

        # every record checked; nothing is written on a bad archive
        restored = 0
        for wallet_id, raw in archive["wallets"].items():
            path = self._wallet_path(agent_id, wallet_id)
            if path.exists() and not overwrite:
                logger.info(f"Skipping existing wallet {wallet_id} during restore")
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(raw)
            restored += 1
        logger.info(f"Restored {restored} wallet(s) for agent {agent_id} from {source}")
        return restored
