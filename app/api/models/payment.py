# app/api/models/payment.py
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class StartPaymentRequest(BaseModel):
    """Request model for starting the x402 payment flow."""
    walletAddress: str = Field(..., description="Payer wallet address (0x + 40 hex).", example="0x" + "a" * 40)


class SettlePaymentRequest(BaseModel):
    """
    Request model for settling a signed permit.

    requirements and permit are accepted as plain objects and validated by
    the payment validators, so malformed values map to INVALID_REQUEST /
    INVALID_SIGNATURE rather than a generic schema error.
    """
    walletAddress: str = Field(..., description="Payer wallet address.")
    requirements: Dict[str, Any] = Field(..., description="Requirements returned by /payment/start.")
    permit: Dict[str, Any] = Field(..., description="Signed transfer permit.")
    dev_bypass: Optional[str] = Field(None, description="Development bypass token (ignored in production).")
