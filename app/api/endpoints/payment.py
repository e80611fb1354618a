# app/api/endpoints/payment.py
from fastapi import APIRouter, Query, Request
from pydantic import ValidationError
from starlette.responses import JSONResponse
from typing import Optional
import logging

from app.core.config import settings
from app.api.models.payment import StartPaymentRequest, SettlePaymentRequest
from app.api.response import ErrorCodes, success_response, error_response
from app.x402.entitlements import get_latest_active_dataset, grant_entitlement, get_status
from app.x402.errors import PaymentError, EntitlementWriteFailed
from app.x402.models import (
    DatasetSection,
    GrantedEntitlementSection,
    PaymentRequirements,
    Permit,
    SettlementResponse,
)
from app.x402.requirements import build_payment_requirements
from app.x402.settlement import settle_payment
from app.x402.validation import is_valid_address, is_valid_permit, is_valid_requirements

logger = logging.getLogger(__name__)

router = APIRouter()


def _payment_error_response(request: Request, error: PaymentError, message: str) -> JSONResponse:
    """Translate a payment error into an envelope response."""
    details = error.detail or error.message
    if error.status_code >= 500 and settings.is_production:
        details = None
    return error_response(request, error.code, message, status_code=error.status_code, details=details)


@router.post("/start", summary="Start x402 payment flow")
def start_payment(
    request: Request,
    body: StartPaymentRequest,
    dev_bypass: Optional[str] = Query(None, description="Development bypass token."),
) -> JSONResponse:
    """
    Returns the payment requirements the client must sign a permit for.

    Raises no HTTP exceptions; failures are returned as error envelopes:
    400 INVALID_WALLET for a malformed address, 400 PAYMENT_FAILED when the
    facilitator cannot quote.
    """
    if not is_valid_address(body.walletAddress):
        return error_response(request, ErrorCodes.INVALID_WALLET, "Invalid wallet address format")

    try:
        requirements = build_payment_requirements(body.walletAddress, dev_bypass)
    except PaymentError as e:
        logger.error(f"Failed to start payment flow for {body.walletAddress}: {e}")
        return _payment_error_response(request, e, "Failed to start payment flow")

    return success_response(request, requirements.model_dump())


@router.post("/settle", summary="Settle x402 payment and receive dataset access")
def settle(request: Request, body: SettlePaymentRequest) -> JSONResponse:
    """
    Validates the permit, settles it through the facilitator and grants an
    entitlement on the current shared dataset.

    All validation happens before any facilitator call.
    """
    wallet_address = body.walletAddress

    if not is_valid_address(wallet_address):
        return error_response(request, ErrorCodes.INVALID_WALLET, "Invalid wallet address format")

    if not is_valid_requirements(body.requirements):
        return error_response(request, ErrorCodes.INVALID_REQUEST, "Invalid payment requirements")

    if not is_valid_permit(body.permit):
        return error_response(request, ErrorCodes.INVALID_SIGNATURE, "Invalid permit signature")

    try:
        requirements = PaymentRequirements.model_validate(body.requirements)
        permit = Permit.model_validate(body.permit)
    except ValidationError as e:
        return error_response(request, ErrorCodes.INVALID_REQUEST, "Invalid payment request", details=str(e))

    try:
        # The dataset must exist before the payment is taken
        dataset = get_latest_active_dataset()
        result = settle_payment(requirements, permit, body.dev_bypass)
    except PaymentError as e:
        logger.error(f"Failed to settle payment for {wallet_address}: {e}")
        return _payment_error_response(request, e, "Failed to settle payment")

    try:
        entitlement = grant_entitlement(
            wallet_address,
            dataset.id,
            result.tx_hash,
            result.facilitator_response,
        )
    except EntitlementWriteFailed as e:
        logger.error(f"Settled payment {e.tx_hash} for {e.wallet_address} has no entitlement")
        return _payment_error_response(request, e, "Payment settled but access could not be recorded")
    except PaymentError as e:
        logger.error(f"Failed to grant entitlement for {wallet_address} (tx {result.tx_hash}): {e}")
        return _payment_error_response(request, e, "Failed to settle payment")

    response = SettlementResponse(
        dataset=DatasetSection(items=dataset.items, next_available_at=dataset.expires_at),
        entitlement=GrantedEntitlementSection(
            id=entitlement.id,
            tx_hash=entitlement.tx_hash,
            valid_until=entitlement.valid_until,
            created_at=entitlement.created_at,
        ),
    )
    return success_response(request, response.to_response())


@router.get("/status", summary="Get payment status and entitlement for a wallet")
def payment_status(
    request: Request,
    walletAddress: str = Query(..., description="Wallet address to look up."),
) -> JSONResponse:
    """
    Reports the wallet's latest entitlement and whether it is still valid.
    """
    if not is_valid_address(walletAddress):
        return error_response(request, ErrorCodes.INVALID_WALLET, "Invalid wallet address format")

    try:
        status = get_status(walletAddress)
    except PaymentError as e:
        logger.error(f"Failed to fetch payment status for {walletAddress}: {e}")
        return _payment_error_response(request, e, "Failed to fetch payment status")

    return success_response(request, status.to_response())
