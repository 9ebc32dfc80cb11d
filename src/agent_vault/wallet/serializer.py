"""CBOR encoding of wallet records and transactions."""

from __future__ import annotations

from typing import Any, TypeVar

import cbor2
from pydantic import BaseModel, ValidationError

from agent_vault.errors import CorruptedWalletRecord
from agent_vault.wallet import secretbox
from agent_vault.wallet.models import SignedTransaction, Transaction, TransactionRequest, WalletData

FORMAT_VERSION = 1
SECRET_FIELDS = ("private_key", "mnemonic")

M = TypeVar("M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------

def _wrap(kind: str, data: dict[str, Any]) -> bytes:
    return cbor2.dumps({"version": FORMAT_VERSION, "type": kind, "data": data})


def _unwrap(raw: bytes, kind: str) -> dict[str, Any]:
    try:
        envelope = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as exc:
        raise CorruptedWalletRecord(f"Invalid CBOR data: {exc}") from exc
    if not isinstance(envelope, dict) or envelope.get("type") != kind:
        raise CorruptedWalletRecord(f"Expected a CBOR '{kind}' record")
    version = envelope.get("version")
    if version != FORMAT_VERSION:
        raise CorruptedWalletRecord(f"Unsupported {kind} record version: {version!r}")
    data = envelope.get("data")
    if not isinstance(data, dict):
        raise CorruptedWalletRecord(f"CBOR '{kind}' record has no data map")
    return data


def _validate(model: type[M], data: dict[str, Any], kind: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise CorruptedWalletRecord(f"Invalid {kind} record: {exc}") from exc


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

def encode_wallet(
    wallet: WalletData,
    password: str | None = None,
    iterations: int = secretbox.DEFAULT_KDF_ITERATIONS,
) -> bytes:
    """Encode *wallet*; secret fields are sealed when *password* is given."""
    data = wallet.model_dump(mode="json")
    if password:
        for field in SECRET_FIELDS:
            if data.get(field):
                data[field] = secretbox.seal(data[field], password, iterations)
    return _wrap("wallet", data)


def decode_wallet(raw: bytes, password: str | None = None) -> WalletData:
    """Decode a wallet record.

    Raises
    ------
    CorruptedWalletRecord
        If the bytes are not a valid wallet record.
    DecryptionError
        If a sealed secret cannot be opened with *password*.
    """
    data = _unwrap(raw, "wallet")
    for field in SECRET_FIELDS:
        value = data.get(field)
        if secretbox.is_sealed(value):
            if not password:
                raise CorruptedWalletRecord(
                    f"Wallet field '{field}' is encrypted but no password is configured"
                )
            data[field] = secretbox.unseal(value, password)
    return _validate(WalletData, data, "wallet")


def peek_wallet(raw: bytes) -> dict[str, Any]:
    """Return the raw field map of a wallet record without opening secrets."""
    return _unwrap(raw, "wallet")


def is_wallet_encrypted(raw: bytes) -> bool:
    data = peek_wallet(raw)
    return any(secretbox.is_sealed(data.get(f)) for f in SECRET_FIELDS)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

def encode_transaction(tx: Transaction) -> bytes:
    return _wrap("transaction", tx.model_dump(mode="json", by_alias=True))


def decode_transaction(raw: bytes) -> Transaction:
    return _validate(Transaction, _unwrap(raw, "transaction"), "transaction")


def encode_transaction_request(request: TransactionRequest) -> bytes:
    return _wrap("transaction_request", request.model_dump(mode="json", by_alias=True))


def decode_transaction_request(raw: bytes) -> TransactionRequest:
    return _validate(
        TransactionRequest, _unwrap(raw, "transaction_request"), "transaction_request"
    )


def encode_signed_transaction(signed: SignedTransaction) -> bytes:
    return _wrap("signed_transaction", signed.model_dump(mode="json", by_alias=True))


def decode_signed_transaction(raw: bytes) -> SignedTransaction:
    return _validate(
        SignedTransaction, _unwrap(raw, "signed_transaction"), "signed_transaction"
    )


def validate_cbor_data(raw: bytes) -> bool:
    """Return ``True`` if *raw* is a well-formed record of any known type."""
    try:
        envelope = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError, TypeError):
        return False
    return (
        isinstance(envelope, dict)
        and envelope.get("version") == FORMAT_VERSION
        and envelope.get("type") in {"wallet", "transaction", "transaction_request", "signed_transaction"}
        and isinstance(envelope.get("data"), dict)
    )
