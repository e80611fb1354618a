# app/x402/requirements.py
"""
Payment requirements for the start of the x402 flow.

Requirements come from one of two strategies (see app.x402.bypass):
- Dev bypass: synthesized locally with a fresh nonce, no network I/O
- Live: quoted by the facilitator for the total including its fees
"""
import logging
import secrets
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.config import Settings, settings as default_settings
from app.x402 import audit
from app.x402.bypass import PaymentMode, select_payment_mode
from app.x402.errors import ConfigurationError, FacilitatorUnavailable, UnsupportedNetwork
from app.x402.facilitator import FacilitatorClient
from app.x402.models import PaymentRequirements
from app.x402.pricing import calculate_total_amount

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_DEADLINE_SECONDS = 3600
FACILITATOR_TOKEN_SYMBOL = "USDC"


def generate_nonce() -> str:
    """Generate a random 32-byte nonce as 0x-prefixed hex."""
    return "0x" + secrets.token_hex(32)


def create_dev_bypass_requirements(config: Settings) -> PaymentRequirements:
    """Synthesize requirements for integration testing without a facilitator."""
    return PaymentRequirements(
        network=config.PAYMENT_NETWORK,
        token=config.PAYMENT_USDC_ADDRESS,
        recipient=ZERO_ADDRESS,
        amount=config.PAYMENT_AMOUNT_USDC,
        nonce=generate_nonce(),
        deadline=int(time.time()) + DEFAULT_DEADLINE_SECONDS,
    )


def build_quote_request(config: Settings) -> Dict[str, Any]:
    """Build the body of a facilitator quote request."""
    totals = calculate_total_amount(
        merchant_amount=config.PAYMENT_MERCHANT_AMOUNT,
        fee_basis_points=config.PAYMENT_FEE_BASIS_POINTS,
        gas_fee=config.PAYMENT_GAS_FEE,
    )
    return {
        "amount": str(totals["total_amount"]),
        "memo": config.PAYMENT_MEMO,
        "network": config.PAYMENT_NETWORK,
        "token": FACILITATOR_TOKEN_SYMBOL,
        "extra": {
            "merchantAddress": config.MERCHANT_ADDRESS,
        },
    }


def _parse_amount(value: Any) -> Optional[str]:
    """Normalize an amount to a non-negative integer string, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value) if value >= 0 else None
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return value
    return None


def parse_quote_response(data: Dict[str, Any], config: Settings) -> PaymentRequirements:
    """
    Map the facilitator's first accepted offer into PaymentRequirements.

    Raises:
        FacilitatorUnavailable: If the response has no usable offer
        UnsupportedNetwork: If the offer is for another network
    """
    accepts = data.get("accepts") if isinstance(data, dict) else None
    if not accepts or not isinstance(accepts, list):
        raise FacilitatorUnavailable("Invalid response from payment facilitator")

    offer = accepts[0]
    if not isinstance(offer, dict):
        raise FacilitatorUnavailable("Invalid response from payment facilitator", f"offer: {offer!r}")

    network = offer.get("network")
    if network != config.PAYMENT_NETWORK:
        raise UnsupportedNetwork(network)

    token = offer.get("asset")
    recipient = offer.get("payTo")
    if not token or not recipient:
        raise FacilitatorUnavailable("Facilitator offer is missing asset or payTo", f"offer: {offer!r}")

    amount = _parse_amount(offer.get("maxAmountRequired"))
    if amount is None:
        raise FacilitatorUnavailable(
            "Facilitator offer has no valid amount",
            f"maxAmountRequired: {offer.get('maxAmountRequired')!r}",
        )

    extra = offer.get("extra")
    if not isinstance(extra, dict):
        extra = {}

    try:
        deadline = int(extra.get("deadline") or int(time.time()) + DEFAULT_DEADLINE_SECONDS)
        return PaymentRequirements(
            network=network,
            token=token,
            recipient=recipient,
            amount=amount,
            nonce=extra.get("nonce") or "",
            deadline=deadline,
        )
    except (ValidationError, ValueError, TypeError) as e:
        raise FacilitatorUnavailable("Invalid offer from payment facilitator", str(e)) from e


def build_payment_requirements(
    wallet_address: str,
    dev_bypass: Optional[str] = None,
    *,
    config: Optional[Settings] = None,
    facilitator: Optional[FacilitatorClient] = None,
) -> PaymentRequirements:
    """
    Produce the terms a client must satisfy to pay for dataset access.

    Args:
        wallet_address: Payer wallet (already validated by the caller)
        dev_bypass: Optional dev bypass token
        config: Settings override (defaults to the process settings)
        facilitator: Facilitator client override

    Returns:
        Fresh PaymentRequirements

    Raises:
        ConfigurationError: If live payment is needed but not configured
        FacilitatorUnavailable: If the facilitator returns no usable quote
        UnsupportedNetwork: If the facilitator quotes another network
    """
    config = config or default_settings
    mode = select_payment_mode(dev_bypass, config)

    if mode is PaymentMode.DEV_BYPASS:
        requirements = create_dev_bypass_requirements(config)
    else:
        if not config.FACILITATOR_API_URL or not config.MERCHANT_ADDRESS:
            raise ConfigurationError("Facilitator configuration not available")

        client = facilitator or FacilitatorClient.from_settings(config)
        quote_request = build_quote_request(config)
        logger.info(f"Requesting payment requirements for {wallet_address}: {quote_request['amount']} units")

        try:
            requirements = parse_quote_response(client.request_requirements(quote_request), config)
        except (FacilitatorUnavailable, UnsupportedNetwork) as e:
            audit.log_payment_failed(wallet_address, stage="requirements", reason=str(e))
            raise

    audit.log_requirements_issued(
        wallet_address=wallet_address,
        mode=mode.value,
        amount=requirements.amount,
        network=requirements.network,
        deadline=requirements.deadline,
    )
    return requirements
