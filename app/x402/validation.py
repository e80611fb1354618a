# app/x402/validation.py
"""
Structural validation of addresses, permits and payment requirements.

All checks return a boolean and never raise, so they can be used as pure
gates before any facilitator call is attempted.
"""
import re
import time
from typing import Any, Mapping, Optional

from eth_utils import is_checksum_address
from pydantic import BaseModel

from app.core.config import settings

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
SIGNATURE_PATTERN = re.compile(r"^0x[a-fA-F0-9]{130}$")
NONCE_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")

PERMIT_FIELDS = ("owner", "spender", "value", "deadline", "nonce", "sig")
REQUIREMENTS_FIELDS = ("network", "token", "recipient", "amount", "nonce", "deadline")


def is_valid_address(value: Any) -> bool:
    """
    Check that a value is a 20-byte hex account address.

    All-lowercase and all-uppercase addresses are accepted as-is; mixed-case
    addresses must carry a valid EIP-55 checksum.
    """
    if not isinstance(value, str) or not ADDRESS_PATTERN.fullmatch(value):
        return False

    hex_part = value[2:]
    if hex_part == hex_part.lower() or hex_part == hex_part.upper():
        return True
    return is_checksum_address(value)


def _as_mapping(obj: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    if isinstance(obj, Mapping):
        return obj
    return None


def _has_required_fields(data: Mapping[str, Any], fields) -> bool:
    return all(data.get(name) for name in fields)


def is_valid_permit(obj: Any, now: Optional[float] = None) -> bool:
    """
    Validate the shape and freshness of a signed permit.

    Args:
        obj: Permit model or mapping
        now: Current Unix time in seconds (defaults to time.time())

    Returns:
        True if every field is present and well-formed and the deadline
        lies strictly in the future
    """
    data = _as_mapping(obj)
    if data is None or not _has_required_fields(data, PERMIT_FIELDS):
        return False

    if not is_valid_address(data["owner"]) or not is_valid_address(data["spender"]):
        return False

    if not isinstance(data["sig"], str) or not SIGNATURE_PATTERN.fullmatch(data["sig"]):
        return False

    if not isinstance(data["nonce"], str) or not NONCE_PATTERN.fullmatch(data["nonce"]):
        return False

    deadline = data["deadline"]
    if isinstance(deadline, bool) or not isinstance(deadline, int):
        return False

    current = time.time() if now is None else now
    return deadline > int(current)


def is_valid_requirements(obj: Any) -> bool:
    """
    Validate the shape of payment requirements.

    The deadline is not checked for freshness.
    """
    data = _as_mapping(obj)
    if data is None or not _has_required_fields(data, REQUIREMENTS_FIELDS):
        return False

    if data["network"] != settings.PAYMENT_NETWORK:
        return False

    return is_valid_address(data["recipient"]) and is_valid_address(data["token"])
