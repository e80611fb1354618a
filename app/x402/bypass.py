# app/x402/bypass.py
"""
Payment mode selection.

A request is served either by the live facilitator or by the development
bypass, which simulates a successful payment without any network I/O.
The bypass is chosen only when both guards hold:

- the deployment is not production
- the caller's token equals the configured DEV_BYPASS_SECRET

Callers select the mode once per operation and then dispatch on it.
"""
import hmac
import logging
from enum import Enum
from typing import Optional

from app.core.config import Settings

logger = logging.getLogger(__name__)

DEV_BYPASS_TX_HASH = "dev-bypass"


class PaymentMode(Enum):
    """How a payment operation is carried out."""
    LIVE = "live"
    DEV_BYPASS = "dev_bypass"


def select_payment_mode(dev_bypass: Optional[str], config: Settings) -> PaymentMode:
    """
    Choose the payment mode for one operation.

    Args:
        dev_bypass: Token supplied by the caller (may be None)
        config: Active settings

    Returns:
        PaymentMode.DEV_BYPASS only outside production with a matching
        secret, PaymentMode.LIVE otherwise
    """
    if config.is_production:
        return PaymentMode.LIVE

    secret = config.DEV_BYPASS_SECRET
    if not secret or not dev_bypass:
        return PaymentMode.LIVE

    if not hmac.compare_digest(dev_bypass.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Dev bypass token supplied but does not match, using live payment")
        return PaymentMode.LIVE

    logger.info("Using dev bypass mode")
    return PaymentMode.DEV_BYPASS
