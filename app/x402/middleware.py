# app/x402/middleware.py
"""
FastAPI middleware that rate limits the payment endpoints.

Requests under PROTECTED_PREFIXES are counted per client IP; once the
window is full the client receives a 429 envelope until it slides.
All other paths pass through unchanged.
"""
import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.response import ErrorCodes, error_response
from app.x402.ratelimit import check_rate_limit, get_rate_limit_headers

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = ("/payment",)


def is_protected_endpoint(path: str) -> bool:
    """Check if the request path is a payment endpoint."""
    return any(path == prefix or path.startswith(prefix + "/") for prefix in PROTECTED_PREFIXES)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP sliding window rate limiting for the payment routes."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not is_protected_endpoint(request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        is_allowed, reason, stats = check_rate_limit(client_ip)
        headers = get_rate_limit_headers(stats)

        if not is_allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {request.method} {request.url.path}")
            return error_response(
                request,
                ErrorCodes.RATE_LIMIT_EXCEEDED,
                f"{reason}. Try again later.",
                status_code=429,
                headers=headers,
            )

        response = await call_next(request)
        for header, value in headers.items():
            response.headers[header] = value
        return response
