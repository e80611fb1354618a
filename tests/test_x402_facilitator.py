"""
Unit tests for the facilitator HTTP client.
"""
import pytest
from unittest.mock import patch, MagicMock

from requests.exceptions import ConnectionError as RequestsConnectionError

from app.core.config import Settings
from app.x402.errors import FacilitatorUnavailable
from app.x402.facilitator import API_KEY_HEADER, FacilitatorClient


def make_response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


class TestRequestRequirements:
    """Test the /requirements call."""

    @patch("app.x402.facilitator.requests.post")
    def test_success(self, mock_post):
        mock_post.return_value = make_response(200, {"accepts": [{"network": "arbitrum"}]})
        client = FacilitatorClient("https://facilitator.example/", timeout=5)

        data = client.request_requirements({"amount": "1"})

        assert data == {"accepts": [{"network": "arbitrum"}]}
        args, kwargs = mock_post.call_args
        assert args[0] == "https://facilitator.example/requirements"
        assert kwargs["json"] == {"amount": "1"}
        assert kwargs["timeout"] == 5
        assert API_KEY_HEADER not in kwargs["headers"]

    @patch("app.x402.facilitator.requests.post")
    def test_402_is_a_quote(self, mock_post):
        """402 Payment Required carries the quote and is parsed like a 200."""
        mock_post.return_value = make_response(402, {"accepts": [{"network": "arbitrum"}]})
        client = FacilitatorClient("https://facilitator.example")

        assert client.request_requirements({})["accepts"][0]["network"] == "arbitrum"

    @patch("app.x402.facilitator.requests.post")
    def test_error_status(self, mock_post):
        mock_post.return_value = make_response(500, None, text="upstream down")
        client = FacilitatorClient("https://facilitator.example")

        with pytest.raises(FacilitatorUnavailable) as exc_info:
            client.request_requirements({})

        assert "upstream down" in str(exc_info.value)

    @patch("app.x402.facilitator.requests.post")
    def test_network_error(self, mock_post):
        mock_post.side_effect = RequestsConnectionError("refused")
        client = FacilitatorClient("https://facilitator.example")

        with pytest.raises(FacilitatorUnavailable):
            client.request_requirements({})

    @patch("app.x402.facilitator.requests.post")
    def test_non_json_body(self, mock_post):
        mock_post.return_value = make_response(200, ValueError("not json"), text="<html>")
        client = FacilitatorClient("https://facilitator.example")

        with pytest.raises(FacilitatorUnavailable):
            client.request_requirements({})


class TestSubmitSettlement:
    """Test the /settle call."""

    @patch("app.x402.facilitator.requests.post")
    def test_sends_api_key(self, mock_post):
        mock_post.return_value = make_response(200, {"txHash": "0xabc"})
        client = FacilitatorClient("https://facilitator.example", api_key="secret-key")

        response = client.submit_settlement({"permit": {}})

        assert response is mock_post.return_value
        args, kwargs = mock_post.call_args
        assert args[0] == "https://facilitator.example/settle"
        assert kwargs["headers"][API_KEY_HEADER] == "secret-key"

    @patch("app.x402.facilitator.requests.post")
    def test_error_response_is_returned_raw(self, mock_post):
        """Failures are classified by the caller, not the client."""
        mock_post.return_value = make_response(400, None, text="insufficient funds")
        client = FacilitatorClient("https://facilitator.example", api_key="k")

        assert client.submit_settlement({}).status_code == 400

    @patch("app.x402.facilitator.requests.post")
    def test_network_error_propagates(self, mock_post):
        mock_post.side_effect = RequestsConnectionError("reset")
        client = FacilitatorClient("https://facilitator.example", api_key="k")

        with pytest.raises(RequestsConnectionError):
            client.submit_settlement({})

    def test_uses_session_when_given(self):
        session = MagicMock()
        session.post.return_value = make_response(200, {})
        client = FacilitatorClient("https://facilitator.example", api_key="k", session=session)

        client.submit_settlement({})

        session.post.assert_called_once()


class TestFromSettings:

    def test_from_settings(self):
        config = Settings(
            FACILITATOR_API_URL="https://f.example",
            FACILITATOR_API_KEY="abc",
            FACILITATOR_TIMEOUT_SECONDS=12,
        )
        client = FacilitatorClient.from_settings(config)

        assert client.base_url == "https://f.example"
        assert client.api_key == "abc"
        assert client.timeout == 12
