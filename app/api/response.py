# app/api/response.py
"""
Response envelope shared by all payment endpoints.

Success: {"success": true, "data": ..., "meta": {"timestamp", "requestId"}}
Error:   {"success": false, "error": {"code", "message", "details"}, "meta": {...}}
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.responses import JSONResponse

REQUEST_ID_HEADER = "X-Request-ID"


class ErrorCodes:
    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_WALLET = "INVALID_WALLET"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    NO_DATA_AVAILABLE = "NO_DATA_AVAILABLE"


def get_request_id(request: Optional[Request]) -> str:
    """Use the caller's X-Request-ID if present, otherwise generate one."""
    if request is not None:
        request_id = request.headers.get(REQUEST_ID_HEADER)
        if request_id:
            return request_id
    return str(uuid.uuid4())


def _meta(request: Optional[Request]) -> Dict[str, str]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "requestId": get_request_id(request),
    }


def success_response(request: Optional[Request], data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": data, "meta": _meta(request)},
    )


def error_response(
    request: Optional[Request],
    code: str,
    message: str,
    status_code: int = 400,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "meta": _meta(request)},
        headers=headers,
    )
