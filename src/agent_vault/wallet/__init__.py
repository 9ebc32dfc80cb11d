"""Multi-chain wallet layer for Agent Vault.

Derives keys for ckETH, Polkadot, Solana, ICP and Arweave, stores wallet
records per agent as CBOR (secrets optionally sealed with a password),
routes signing and queries to per-chain providers, and drains the ledger's
transaction queue.
"""
