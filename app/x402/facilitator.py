# app/x402/facilitator.py
"""
HTTP client for the x402 payment facilitator.

The facilitator exposes two JSON endpoints:
- POST {base}/requirements: quote payment terms for an amount
- POST {base}/settle: settle a signed permit (authenticated with X-API-Key)

Responses are treated as opaque JSON; only the few fields the payment flow
needs are ever read from them.
"""
import logging
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from app.core.config import Settings, settings
from app.x402.errors import FacilitatorUnavailable

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class FacilitatorClient:
    """Thin requests-based client for the facilitator API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "FacilitatorClient":
        config = config or settings
        return cls(
            base_url=config.FACILITATOR_API_URL,
            api_key=config.FACILITATOR_API_KEY or None,
            timeout=config.FACILITATOR_TIMEOUT_SECONDS,
        )

    def _post(self, path: str, body: Dict[str, Any], headers: Dict[str, str]) -> requests.Response:
        url = f"{self.base_url}{path}"
        poster = self._session.post if self._session is not None else requests.post
        return poster(url, json=body, headers=headers, timeout=self.timeout)

    def request_requirements(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ask the facilitator for payment terms.

        A 402 response is the protocol's normal way of returning a quote and
        is parsed like a 200.

        Args:
            body: Quote request ({amount, memo, network, token, extra})

        Returns:
            The decoded JSON response

        Raises:
            FacilitatorUnavailable: On network errors, unexpected status codes
                or a body that is not JSON
        """
        try:
            response = self._post("/requirements", body, {"Content-Type": "application/json"})
        except RequestException as e:
            logger.error(f"Error requesting payment requirements from facilitator ({self.base_url}): {e}")
            raise FacilitatorUnavailable("Payment facilitator unreachable", str(e)) from e

        if not response.ok and response.status_code != 402:
            logger.error(f"Facilitator returned {response.status_code} for requirements: {response.text}")
            raise FacilitatorUnavailable(f"Facilitator error: {response.text}", response.text)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Facilitator requirements response is not JSON: {e}")
            raise FacilitatorUnavailable("Invalid response from payment facilitator", str(e)) from e

    def submit_settlement(self, body: Dict[str, Any]) -> requests.Response:
        """
        Submit a settlement request.

        The raw response is returned so the caller can classify failures.

        Raises:
            RequestException: If the HTTP call itself fails
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        return self._post("/settle", body, headers)
