# app/x402/models.py
"""
Value objects and records of the payment lifecycle.

PaymentRequirements and Permit are request-scoped and never persisted.
SharedDataset and Entitlement mirror rows owned by the dataset store.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PaymentRequirements(BaseModel):
    """Terms the client must satisfy to pay."""
    network: str
    token: str
    recipient: str
    amount: str = Field(..., description="Amount in token smallest units (decimal string).")
    nonce: str = Field(..., description="Single-use 32-byte hex nonce.")
    deadline: int = Field(..., description="Unix time (seconds) after which the terms lapse.")


class Permit(BaseModel):
    """Client-signed transfer authorization."""
    owner: str
    spender: str
    value: str
    deadline: int
    nonce: str
    sig: str = Field(..., description="65-byte r||s||v signature as 0x-prefixed hex.")


class SettlementResult(BaseModel):
    tx_hash: str
    facilitator_response: Optional[Any] = None
    bypassed: bool = False


class SharedDataset(BaseModel):
    id: str
    items: List[Any] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class Entitlement(BaseModel):
    """Time-boxed dataset access granted to one wallet after settlement."""
    id: str
    wallet_address: str
    shared_dataset_id: Optional[str] = None
    tx_hash: str
    facilitator_response: Optional[Any] = None
    valid_until: datetime
    created_at: datetime

    def is_valid_at(self, now: datetime) -> bool:
        return now < self.valid_until


class DatasetSection(BaseModel):
    items: List[Any]
    next_available_at: datetime


class GrantedEntitlementSection(BaseModel):
    id: str
    tx_hash: str
    valid_until: datetime
    created_at: datetime


class EntitlementSection(GrantedEntitlementSection):
    is_valid: bool


class PaymentStatus(BaseModel):
    dataset: Optional[DatasetSection] = None
    entitlement: Optional[EntitlementSection] = None
    now: datetime
    valid_until: Optional[datetime] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class SettlementResponse(BaseModel):
    """Dataset and entitlement returned right after a settlement."""
    dataset: DatasetSection
    entitlement: GrantedEntitlementSection

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
