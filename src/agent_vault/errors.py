"""Exception taxonomy for the wallet and transaction orchestration core."""

from __future__ import annotations


class AgentVaultError(Exception):
    """Base class for every error raised by ``agent_vault``."""


class KeyDerivationError(AgentVaultError):
    """Key material could not be turned into a keypair.

    ``reason`` is a short machine-readable code such as ``"bad_checksum"``,
    ``"unsupported_chain"``, ``"malformed_key"`` or ``"invalid_path"``.
    """

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or reason)


class InvalidMnemonic(KeyDerivationError):
    """The phrase failed BIP-39 word-list or checksum validation."""

    def __init__(
        self, message: str = "Invalid mnemonic phrase", reason: str = "invalid_mnemonic"
    ) -> None:
        super().__init__(reason, message)


class WalletNotFoundError(AgentVaultError):
    def __init__(self, wallet_id: str, agent_id: str | None = None) -> None:
        self.wallet_id = wallet_id
        self.agent_id = agent_id
        where = f" for agent '{agent_id}'" if agent_id else ""
        super().__init__(f"Wallet not found: {wallet_id}{where}")


class UnsupportedChainError(AgentVaultError, ValueError):
    def __init__(self, chain: object) -> None:
        self.chain = chain
        super().__init__(f"Unsupported chain: {getattr(chain, 'value', chain)}")


class CorruptedWalletRecord(AgentVaultError):
    """A wallet file exists but cannot be decoded into a wallet record."""


class SigningFailedError(AgentVaultError):
    pass


class InsufficientThresholdError(AgentVaultError):
    def __init__(self, provided: int, required: int) -> None:
        self.provided = provided
        self.required = required
        super().__init__(
            f"Insufficient signatures: {provided}/{required} required"
        )


class DecryptionError(AgentVaultError):
    """Wrong password/key or a tampered envelope."""


class LedgerCallError(AgentVaultError):
    """A call to the external ledger actor failed or returned ``err``."""


class ProviderError(AgentVaultError):
    """A chain provider could not complete a request."""
