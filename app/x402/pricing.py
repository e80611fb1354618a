# app/x402/pricing.py
"""
Price calculation for x402 payment requirements.

The amount quoted to the facilitator is:

    total = merchant_amount + service_fee + gas_fee
    service_fee = merchant_amount * fee_basis_points // 10000

All values are integers in USDC smallest units (6 decimals), so no rounding
happens anywhere in the calculation.

Configuration is loaded from app/core/config.py:
- PAYMENT_MERCHANT_AMOUNT: Amount the merchant receives
- PAYMENT_FEE_BASIS_POINTS: Facilitator service fee in basis points
- PAYMENT_GAS_FEE: Flat gas fee charged by the facilitator
"""
import logging
from typing import Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

BASIS_POINTS_DENOMINATOR = 10000
USDC_UNITS_PER_DOLLAR = 10 ** 6


def calculate_service_fee(merchant_amount: int, fee_basis_points: Optional[int] = None) -> int:
    """
    Calculate the facilitator service fee.

    Args:
        merchant_amount: Merchant amount in smallest units
        fee_basis_points: Fee in basis points. Uses config if not provided.

    Returns:
        Service fee in smallest units (floored)
    """
    if merchant_amount < 0:
        raise ValueError("Merchant amount must be non-negative")

    bps = fee_basis_points if fee_basis_points is not None else settings.PAYMENT_FEE_BASIS_POINTS
    return merchant_amount * bps // BASIS_POINTS_DENOMINATOR


def calculate_total_amount(
    merchant_amount: Optional[int] = None,
    fee_basis_points: Optional[int] = None,
    gas_fee: Optional[int] = None,
) -> Dict[str, int]:
    """
    Calculate the total charge for one dataset purchase.

    Args:
        merchant_amount: Merchant amount. Uses config if not provided.
        fee_basis_points: Service fee in basis points. Uses config if not provided.
        gas_fee: Flat gas fee. Uses config if not provided.

    Returns:
        Dict containing merchant_amount, service_fee, gas_fee and total_amount,
        all in smallest units
    """
    merchant = merchant_amount if merchant_amount is not None else settings.PAYMENT_MERCHANT_AMOUNT
    gas = gas_fee if gas_fee is not None else settings.PAYMENT_GAS_FEE
    service_fee = calculate_service_fee(merchant, fee_basis_points)
    total = merchant + service_fee + gas

    logger.debug(
        f"Calculated payment total: merchant={merchant} + fee={service_fee} "
        f"+ gas={gas} = {total} (${total / USDC_UNITS_PER_DOLLAR:.6f})"
    )

    return {
        "merchant_amount": merchant,
        "service_fee": service_fee,
        "gas_fee": gas,
        "total_amount": total,
    }
