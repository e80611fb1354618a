# app/core/config.py
import logging
from typing import List
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    PROJECT_NAME: str = "Dataset Paywall API"
    ENVIRONMENT: str = "development"

    # x402 facilitator
    FACILITATOR_API_URL: str = ""
    FACILITATOR_API_KEY: str = ""
    FACILITATOR_TIMEOUT_SECONDS: float = 30.0
    MERCHANT_ADDRESS: str = ""

    # Development bypass (never honoured when ENVIRONMENT=production)
    DEV_BYPASS_SECRET: str = ""

    # Payment terms, all amounts in USDC smallest units (6 decimals)
    PAYMENT_NETWORK: str = "arbitrum"
    PAYMENT_USDC_ADDRESS: str = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"  # USDC on Arbitrum
    PAYMENT_AMOUNT_USDC: str = "1000000"
    PAYMENT_MERCHANT_AMOUNT: int = 900000
    PAYMENT_FEE_BASIS_POINTS: int = 50
    PAYMENT_GAS_FEE: int = 100000
    PAYMENT_MEMO: str = "Dataset access"

    # Settlement retry policy
    SETTLEMENT_MAX_ATTEMPTS: int = 4
    SETTLEMENT_BASE_DELAY_SECONDS: float = 1.0
    SETTLEMENT_RETRYABLE_SUBSTRINGS: List[str] = [
        "nonce uniqueness",
        "checking nonce",
        "database",
        "Internal error",
    ]
    SETTLEMENT_RETRYABLE_CODES: List[str] = [
        "NONCE_CONFLICT",
        "DATABASE_ERROR",
        "INTERNAL_ERROR",
    ]

    # Storage
    DATABASE_PATH: str = "data/paywall.db"
    AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"
    LLMS_TXT_PATH: str = "llms.txt"

    # API settings
    RATE_LIMIT_MAX: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 900  # 15 minutes
    CORS_ORIGINS: List[str] = []

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()


def validate_payment_config(config: Settings) -> List[str]:
    """
    Check the facilitator settings needed for live payments.

    Missing values are not fatal at startup (the dev bypass path works without
    them), but in production they are logged as a warning.

    Returns:
        Names of the missing settings
    """
    required = ["FACILITATOR_API_URL", "FACILITATOR_API_KEY", "MERCHANT_ADDRESS"]
    missing = [name for name in required if not getattr(config, name)]

    if missing and config.is_production:
        logger.warning(f"Missing payment configuration: {', '.join(missing)}")

    return missing


settings = get_settings()
