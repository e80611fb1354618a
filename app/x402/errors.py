# app/x402/errors.py
"""
Error types for the payment and entitlement lifecycle.

Every error carries the envelope error code and HTTP status the API layer
uses when it reports the failure to the client.
"""
from typing import Optional


class PaymentError(Exception):
    """Base class for payment and entitlement errors."""

    code = "PAYMENT_FAILED"
    status_code = 400

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidInput(PaymentError):
    """Malformed address, permit or requirements. Always caller-fixable."""

    code = "INVALID_REQUEST"


class ConfigurationError(PaymentError):
    """Required deployment configuration is missing."""


class FacilitatorUnavailable(PaymentError):
    """The facilitator could not provide a usable quote."""


class UnsupportedNetwork(PaymentError):
    """The facilitator offered a network other than the supported one.

    Attributes:
        network: The network the facilitator offered.
    """

    def __init__(self, network: Optional[str]):
        self.network = network
        super().__init__(f"Unsupported network offered by facilitator: {network}")


class SettlementFailed(PaymentError):
    """Terminal settlement outcome.

    Attributes:
        attempts: Number of facilitator calls made.
        last_status: Last HTTP status from the facilitator (if any).
    """

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        attempts: int = 0,
        last_status: Optional[int] = None,
    ):
        self.attempts = attempts
        self.last_status = last_status
        super().__init__(message, detail)


class DatasetUnavailable(PaymentError):
    """No dataset record could be resolved for an entitlement grant."""

    code = "NO_DATA_AVAILABLE"
    status_code = 404


class NoDataAvailable(PaymentError):
    """The dataset store is empty."""

    code = "NO_DATA_AVAILABLE"
    status_code = 404


class EntitlementLookupFailed(PaymentError):
    """Persistence read error, distinct from "no entitlement found"."""

    code = "INTERNAL_ERROR"
    status_code = 500


class EntitlementWriteFailed(PaymentError):
    """Entitlement insert failed after a settlement was confirmed.

    Attributes:
        wallet_address: Payer wallet.
        tx_hash: Settlement transaction reference.
    """

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, wallet_address: str, tx_hash: str, detail: Optional[str] = None):
        self.wallet_address = wallet_address
        self.tx_hash = tx_hash
        super().__init__(
            f"Payment {tx_hash} settled but entitlement for {wallet_address} was not recorded",
            detail,
        )
