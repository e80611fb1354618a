# app/x402/settlement.py
"""
Settlement of signed permits through the x402 facilitator.

Flow:
1. Select the payment mode (dev bypass or live)
2. Split the permit signature into r, s, v
3. Build the facilitator settlement payload
4. Submit with bounded exponential-backoff retry

Failure classification:
- HTTP 2xx: success, the transaction hash is extracted from the body
- HTTP >= 500: retryable
- Structured error code in the retryable set: retryable
- Body text containing a retryable substring (nonce race, database hiccup): retryable
- Anything else: terminal, fails on the first call
- Network exception: retryable

Substring matching depends on the facilitator's error prose, so both the
substrings and the structured codes are configurable (SETTLEMENT_RETRYABLE_*).
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from requests.exceptions import RequestException

from app.core.config import Settings, settings as default_settings
from app.x402 import audit
from app.x402.bypass import DEV_BYPASS_TX_HASH, PaymentMode, select_payment_mode
from app.x402.errors import ConfigurationError, SettlementFailed
from app.x402.facilitator import FacilitatorClient
from app.x402.models import PaymentRequirements, Permit, SettlementResult

logger = logging.getLogger(__name__)

PAYMENT_SCHEME = "exact"
MAX_TIMEOUT_SECONDS = 3600
UNKNOWN_TX_HASH = "unknown"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for facilitator settlement calls."""
    max_attempts: int = 4
    base_delay: float = 1.0
    retryable_substrings: Tuple[str, ...] = (
        "nonce uniqueness",
        "checking nonce",
        "database",
        "Internal error",
    )
    retryable_codes: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.SETTLEMENT_MAX_ATTEMPTS,
            base_delay=config.SETTLEMENT_BASE_DELAY_SECONDS,
            retryable_substrings=tuple(config.SETTLEMENT_RETRYABLE_SUBSTRINGS),
            retryable_codes=tuple(config.SETTLEMENT_RETRYABLE_CODES),
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after a failed 1-indexed attempt."""
        return self.base_delay * (2 ** (attempt - 1))


def split_signature(sig: str) -> Tuple[str, str, int]:
    """
    Split a 65-byte 0x-prefixed signature into its ECDSA components.

    Returns:
        Tuple of (r, s, v) where r and s are 0x-prefixed 32-byte hex and v
        is the recovery id
    """
    r = sig[0:66]
    s = "0x" + sig[66:130]
    v = int(sig[130:132], 16)
    return r, s, v


def build_settlement_payload(
    requirements: PaymentRequirements,
    permit: Permit,
    config: Settings,
) -> Dict[str, Any]:
    """Assemble the facilitator settlement request body."""
    r, s, v = split_signature(permit.sig)

    return {
        "network": requirements.network,
        "token": requirements.token,
        "recipient": requirements.recipient,
        "amount": requirements.amount,
        "nonce": permit.nonce,
        "deadline": requirements.deadline,
        "extra": {
            "merchantAddress": config.MERCHANT_ADDRESS,
        },
        "permit": {
            "owner": permit.owner,
            "spender": permit.spender,
            "value": permit.value,
            "deadline": permit.deadline,
            "nonce": permit.nonce,
            "sig": permit.sig,
        },
        "paymentPayload": {
            "scheme": PAYMENT_SCHEME,
            "network": requirements.network,
            "payload": {
                "from": permit.owner,
                "to": permit.spender,
                "value": permit.value,
                "validAfter": 0,
                "validBefore": permit.deadline,
                "nonce": permit.nonce,
                "v": v,
                "r": r,
                "s": s,
            },
        },
        "paymentRequirements": {
            "scheme": PAYMENT_SCHEME,
            "network": requirements.network,
            "token": requirements.token,
            "amount": requirements.amount,
            "recipient": requirements.recipient,
            "description": config.PAYMENT_MEMO,
            "maxTimeoutSeconds": MAX_TIMEOUT_SECONDS,
        },
    }


def extract_tx_hash(data: Any) -> str:
    """Return the first populated transaction reference in a settle response."""
    if not isinstance(data, dict):
        return UNKNOWN_TX_HASH
    meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    return (
        data.get("txHash")
        or data.get("transactionHash")
        or meta.get("incomingTxHash")
        or UNKNOWN_TX_HASH
    )


def extract_error_code(body_text: str) -> Optional[str]:
    """Read a structured error code from a JSON error body, if there is one."""
    try:
        data = json.loads(body_text)
    except (ValueError, TypeError):
        return None
    if not isinstance(data, dict):
        return None

    error = data.get("error")
    if isinstance(error, dict) and error.get("code"):
        return str(error["code"])
    code = data.get("code") or data.get("errorCode")
    return str(code) if code else None


def is_retryable_failure(status_code: int, body_text: str, policy: RetryPolicy) -> bool:
    """Classify a non-success facilitator response."""
    if status_code >= 500:
        return True

    code = extract_error_code(body_text)
    if code is not None and code in policy.retryable_codes:
        return True

    return any(fragment in body_text for fragment in policy.retryable_substrings)


def submit_with_retry(
    client: FacilitatorClient,
    payload: Dict[str, Any],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    wallet_address: Optional[str] = None,
) -> Tuple[Dict[str, Any], int]:
    """
    Submit a settlement payload, retrying transient failures.

    Returns:
        Tuple of (decoded success body, attempts made)

    Raises:
        SettlementFailed: On a terminal failure or when all attempts are used
    """
    last_detail = "no attempt made"
    last_status: Optional[int] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            response = client.submit_settlement(payload)
        except RequestException as e:
            last_detail = f"network error: {e}"
            last_status = None
            logger.warning(f"Settlement attempt {attempt}/{policy.max_attempts} failed: {last_detail}")
        else:
            if response.ok:
                try:
                    data = response.json()
                except ValueError:
                    data = {}
                logger.info(f"Settlement succeeded on attempt {attempt}/{policy.max_attempts}")
                return data, attempt

            last_status = response.status_code
            last_detail = response.text
            if not is_retryable_failure(response.status_code, response.text, policy):
                logger.error(f"Settlement rejected with {response.status_code}: {response.text}")
                raise SettlementFailed(
                    f"Payment settlement failed: {response.text}",
                    detail=response.text,
                    attempts=attempt,
                    last_status=last_status,
                )
            logger.warning(
                f"Settlement attempt {attempt}/{policy.max_attempts} got retryable "
                f"{response.status_code}: {response.text}"
            )

        if attempt == policy.max_attempts:
            break

        delay = policy.delay_for(attempt)
        audit.log_settlement_retry(wallet_address, attempt=attempt, delay_seconds=delay, reason=last_detail)
        logger.info(f"Retryable settlement error, waiting {delay}s before retry...")
        sleep(delay)

    raise SettlementFailed(
        f"Payment settlement failed after {policy.max_attempts} attempts: {last_detail}",
        detail=last_detail,
        attempts=policy.max_attempts,
        last_status=last_status,
    )


def settle_payment(
    requirements: PaymentRequirements,
    permit: Permit,
    dev_bypass: Optional[str] = None,
    *,
    config: Optional[Settings] = None,
    facilitator: Optional[FacilitatorClient] = None,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SettlementResult:
    """
    Settle a validated permit and return the transaction reference.

    Inputs must already have passed is_valid_requirements/is_valid_permit.

    Raises:
        ConfigurationError: If live settlement is needed but not configured
        SettlementFailed: On a terminal failure or after exhausting retries
    """
    config = config or default_settings
    mode = select_payment_mode(dev_bypass, config)

    if mode is PaymentMode.DEV_BYPASS:
        audit.log_payment_settled(permit.owner, tx_hash=DEV_BYPASS_TX_HASH, mode=mode.value, attempts=0)
        return SettlementResult(tx_hash=DEV_BYPASS_TX_HASH, facilitator_response=None, bypassed=True)

    if not config.FACILITATOR_API_URL or not config.FACILITATOR_API_KEY:
        raise ConfigurationError("Facilitator configuration not available")

    client = facilitator or FacilitatorClient.from_settings(config)
    policy = policy or RetryPolicy.from_settings(config)
    payload = build_settlement_payload(requirements, permit, config)

    try:
        data, attempts = submit_with_retry(client, payload, policy, sleep=sleep, wallet_address=permit.owner)
    except SettlementFailed as e:
        audit.log_payment_failed(permit.owner, stage="settlement", reason=e.detail or e.message)
        raise

    tx_hash = extract_tx_hash(data)
    if tx_hash == UNKNOWN_TX_HASH:
        logger.warning(f"Settlement for {permit.owner} succeeded without a transaction hash")

    audit.log_payment_settled(permit.owner, tx_hash=tx_hash, mode=mode.value, attempts=attempts)
    return SettlementResult(tx_hash=tx_hash, facilitator_response=data)
