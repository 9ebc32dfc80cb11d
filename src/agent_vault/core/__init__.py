"""Vault orchestration."""

from agent_vault.core.vault import AgentVault

__all__ = ["AgentVault"]
