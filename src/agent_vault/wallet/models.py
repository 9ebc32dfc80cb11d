"""Pydantic models for wallets and chain transactions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agent_vault.wallet.chains import Chain, normalize_chain


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CreationMethod(str, Enum):
    PRIVATE_KEY = "private-key"
    SEED = "seed"
    MNEMONIC = "mnemonic"


class TxStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def new_wallet_id() -> str:
    """Generate a wallet id of the form ``wallet-<32 hex chars>``."""
    return f"wallet-{uuid.uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationResult:
    """Outcome of a best-effort call against an external collaborator."""

    success: bool
    error: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, **data: Any) -> OperationResult:
        return cls(success=False, error=error, data=data)


def _coerce_chain(value: Any) -> Chain:
    return normalize_chain(value)


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

class WalletData(BaseModel):
    """A wallet owned by one agent.

    Exactly the private key *or* the mnemonic is held, matching
    ``creation_method``. Both may be absent on a public view of the record.
    """

    id: str = Field(default_factory=new_wallet_id)
    agent_id: str
    chain: Chain
    address: str
    private_key: Optional[str] = None
    mnemonic: Optional[str] = None
    derivation_path: Optional[str] = None  # None for Arweave (no HD path)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    creation_method: CreationMethod
    chain_metadata: Optional[dict[str, Any]] = None

    normalize_chain_tag = field_validator("chain", mode="before")(_coerce_chain)

    @model_validator(mode="after")
    def _check_secret_matches_method(self) -> WalletData:
        if self.private_key and self.mnemonic:
            raise ValueError("A wallet holds either a private key or a mnemonic, not both")
        if self.private_key and self.creation_method is not CreationMethod.PRIVATE_KEY:
            raise ValueError(
                f"private_key set on a wallet created via '{self.creation_method.value}'"
            )
        if self.mnemonic and self.creation_method is CreationMethod.PRIVATE_KEY:
            raise ValueError("mnemonic set on a wallet created from a private key")
        return self

    @property
    def has_secret(self) -> bool:
        return bool(self.private_key or self.mnemonic)

    def public_view(self) -> WalletData:
        """Return a copy with every secret field stripped."""
        return self.model_copy(update={"private_key": None, "mnemonic": None})


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TransactionRequest(BaseModel):
    """A transfer request. ``amount`` is a decimal string in native units."""

    model_config = ConfigDict(populate_by_name=True)

    to: str
    amount: str
    chain: Chain
    memo: Optional[str] = None
    gas_price: Optional[str] = Field(default=None, alias="gasPrice")
    gas_limit: Optional[str] = Field(default=None, alias="gasLimit")

    normalize_chain_tag = field_validator("chain", mode="before")(_coerce_chain)

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, value: str) -> str:
        try:
            parsed = Decimal(value)
        except (InvalidOperation, TypeError):
            raise ValueError(f"Amount must be a decimal string, got {value!r}") from None
        if not parsed.is_finite() or parsed < 0:
            raise ValueError(f"Amount must be a non-negative number, got {value!r}")
        return value

    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)

    def canonical_payload(self) -> dict[str, Any]:
        """The deterministic dict every provider signs over."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Transaction(BaseModel):
    """Canonical, chain-agnostic view of an on-chain transaction."""

    model_config = ConfigDict(populate_by_name=True)

    hash: str
    from_address: str = Field(alias="from")
    to: str
    amount: str
    chain: Chain
    timestamp: datetime = Field(default_factory=utcnow)
    status: TxStatus = TxStatus.PENDING
    fee: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    normalize_chain_tag = field_validator("chain", mode="before")(_coerce_chain)


class SignedTransaction(BaseModel):
    """Opaque chain-specific signed encoding plus its signature."""

    signed_tx: str
    signature: str
    tx_hash: Optional[str] = None
    request: Optional[TransactionRequest] = None


class Balance(BaseModel):
    amount: str
    denomination: str
    chain: Chain
    address: str
    block_number: Optional[int] = None
