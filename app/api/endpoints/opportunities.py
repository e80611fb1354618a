# app/api/endpoints/opportunities.py
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse
import logging

from app.core.config import settings
from app.api.response import ErrorCodes, success_response, error_response
from app.services.opportunities import OPPORTUNITY_LIMIT, fetch_opportunities
from app.services.store import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/opportunities", summary=f"Get current arbitrage opportunities (top {OPPORTUNITY_LIMIT} by spread)")
def list_opportunities(request: Request) -> JSONResponse:
    """
    Free feed of the widest cross-venue spreads. No payment required.
    """
    try:
        opportunities = fetch_opportunities()
    except (StoreError, ValueError, TypeError) as e:
        logger.error(f"Failed to fetch opportunities: {e}")
        return error_response(
            request,
            ErrorCodes.INTERNAL_ERROR,
            "Failed to fetch opportunities",
            status_code=500,
            details=None if settings.is_production else str(e),
        )

    return success_response(request, [event.model_dump(mode="json") for event in opportunities])
