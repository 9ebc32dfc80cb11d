"""Records exchanged with the external wallet ledger.

The ledger speaks camelCase; these models accept either spelling and dump
with ``by_alias=True`` when a payload goes back over the wire.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def to_millis(when: datetime) -> int:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return int(when.timestamp() * 1000)


def _variant_name(value: Any) -> Any:
    # {"active": None} -> "active"
    if isinstance(value, dict) and len(value) == 1:
        return next(iter(value))
    return value


def _opt_value(value: Any) -> Any:
    # Candid opt: [] or [value]
    if isinstance(value, (list, tuple)) and len(value) <= 1:
        return value[0] if value else None
    return value


class _LedgerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class WalletStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    REVOKED = "revoked"

    def variant(self) -> dict[str, None]:
        return {self.value: None}


class TransactionAction(str, Enum):
    SEND_FUNDS = "send_funds"
    SIGN_MESSAGE = "sign_message"
    DEPLOY_CONTRACT = "deploy_contract"


class TransactionPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class QueueStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    SIGNED = "signed"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Wallet registry
# ---------------------------------------------------------------------------

class CanisterWalletInfo(_LedgerModel):
    """Public wallet metadata held by the ledger. Never carries secrets."""

    id: str
    agent_id: str
    chain: str
    address: str
    registered_at: int
    status: WalletStatus = WalletStatus.ACTIVE

    unwrap_status_variant = field_validator("status", mode="before")(_variant_name)

    def to_actor_payload(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        payload["status"] = self.status.variant()
        return payload


class WalletSyncStatus(_LedgerModel):
    wallet_id: str
    in_canister: bool = False
    canister_status: Optional[CanisterWalletInfo] = None
    local_exists: bool = False
    synced: bool = False


# ---------------------------------------------------------------------------
# Transaction queue
# ---------------------------------------------------------------------------

class QueuedAction(_LedgerModel):
    wallet_id: str
    action: TransactionAction = TransactionAction.SEND_FUNDS
    parameters: list[tuple[str, str]] = Field(default_factory=list)
    priority: TransactionPriority = TransactionPriority.NORMAL
    threshold: Optional[int] = None

    unwrap_action_variants = field_validator("action", "priority", mode="before")(_variant_name)
    unwrap_opt_threshold = field_validator("threshold", mode="before")(_opt_value)

    def params(self) -> dict[str, str]:
        """Parameters as a dict; later duplicates win."""
        return dict(self.parameters)


class QueuedTransaction(_LedgerModel):
    id: str
    action: QueuedAction
    status: QueueStatus = QueueStatus.PENDING
    result: Optional[str] = None
    retry_count: int = 0
    scheduled_at: Optional[int] = None
    created_at: int = Field(default_factory=now_millis)
    signed_at: Optional[int] = None
    completed_at: Optional[int] = None
    error_message: Optional[str] = None

    unwrap_status_variant = field_validator("status", mode="before")(_variant_name)
    unwrap_opt_fields = field_validator(
        "result", "scheduled_at", "signed_at", "completed_at", "error_message", mode="before"
    )(_opt_value)


class QueueStats(_LedgerModel):
    total: int = 0
    pending: int = 0
    queued: int = 0
    signed: int = 0
    completed: int = 0
    failed: int = 0
