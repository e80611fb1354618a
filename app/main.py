# app/main.py
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import PlainTextResponse

from app.core.config import settings, validate_payment_config
from app.api.endpoints import opportunities, payment
from app.api.response import REQUEST_ID_HEADER, ErrorCodes, error_response
from app.services.store import init_store, close_store
from app.x402 import __version__, audit
from app.x402.middleware import RateLimitMiddleware
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO if settings.is_production else logging.DEBUG)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the dataset store on startup and release it on shutdown."""
    validate_payment_config(settings)
    init_store()
    logger.info(f"{settings.PROJECT_NAME} started (environment: {settings.ENVIRONMENT})")
    yield
    close_store()
    logger.info(f"{settings.PROJECT_NAME} shut down")


app = FastAPI(title=settings.PROJECT_NAME, version=__version__, lifespan=lifespan)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if settings.is_production else ["*"],
    allow_credentials=settings.is_production,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(opportunities.router, tags=["opportunities"])
app.include_router(payment.router, prefix="/payment", tags=["payment"])


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(
        request,
        ErrorCodes.VALIDATION_ERROR,
        "Request validation failed",
        status_code=400,
        details=exc.errors(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = ErrorCodes.NOT_FOUND if exc.status_code == 404 else ErrorCodes.INVALID_REQUEST
    return error_response(request, code, str(exc.detail), status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    audit.log_error(
        type(exc).__name__,
        str(exc),
        context={"method": request.method, "path": request.url.path},
        request_id=request.headers.get(REQUEST_ID_HEADER),
    )
    message = "An internal error occurred" if settings.is_production else str(exc)
    return error_response(request, ErrorCodes.INTERNAL_ERROR, message, status_code=500)


@app.get("/health", summary="Health Check", tags=["default"])
def health():
    """ Basic health check endpoint. """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


@app.get("/", summary="Service Index", tags=["default"])
def read_root():
    logger.info("Root endpoint '/' accessed.")
    return {
        "name": settings.PROJECT_NAME,
        "version": __version__,
        "description": "Prediction market arbitrage data with dataset access gated by x402 permit payments",
        "endpoints": {
            "opportunities": "/opportunities",
            "payment": {
                "start": "/payment/start",
                "settle": "/payment/settle",
                "status": "/payment/status",
            },
            "health": "/health",
            "llms": "/llms.txt",
        },
    }


@app.get("/llms.txt", summary="LLM-readable API description", tags=["default"], response_class=PlainTextResponse)
def llms_txt():
    try:
        content = Path(settings.LLMS_TXT_PATH).read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to read {settings.LLMS_TXT_PATH}: {e}")
        return PlainTextResponse("llms.txt not found", status_code=404)
    return PlainTextResponse(content, media_type="text/plain; charset=utf-8")
