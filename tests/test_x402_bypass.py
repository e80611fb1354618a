"""
Unit tests for payment mode selection.
"""
from app.core.config import Settings
from app.x402.bypass import PaymentMode, select_payment_mode


def make_settings(**overrides) -> Settings:
    values = {"ENVIRONMENT": "development", "DEV_BYPASS_SECRET": "let-me-in"}
    values.update(overrides)
    return Settings(**values)


class TestSelectPaymentMode:
    """Both guards must hold for the dev bypass."""

    def test_matching_token_outside_production(self):
        assert select_payment_mode("let-me-in", make_settings()) is PaymentMode.DEV_BYPASS

    def test_matching_token_in_production(self):
        """Production never bypasses, whatever the token."""
        config = make_settings(ENVIRONMENT="production")
        assert select_payment_mode("let-me-in", config) is PaymentMode.LIVE

    def test_production_is_case_insensitive(self):
        config = make_settings(ENVIRONMENT="Production")
        assert select_payment_mode("let-me-in", config) is PaymentMode.LIVE

    def test_wrong_token(self):
        assert select_payment_mode("let-me-out", make_settings()) is PaymentMode.LIVE

    def test_no_token(self):
        assert select_payment_mode(None, make_settings()) is PaymentMode.LIVE
        assert select_payment_mode("", make_settings()) is PaymentMode.LIVE

    def test_secret_not_configured(self):
        """An empty secret never matches, not even an empty token."""
        config = make_settings(DEV_BYPASS_SECRET="")
        assert select_payment_mode("", config) is PaymentMode.LIVE
        assert select_payment_mode("anything", config) is PaymentMode.LIVE

    def test_staging_environment_allows_bypass(self):
        config = make_settings(ENVIRONMENT="staging")
        assert select_payment_mode("let-me-in", config) is PaymentMode.DEV_BYPASS
