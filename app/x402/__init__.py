# app/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module gates access to the shared dataset behind single-use signed
transfer permits settled through an external x402 facilitator.

Key components:
- validation: Address, permit and requirements validators
- bypass: Live vs. development bypass payment mode selection
- pricing: Integer fee calculation for the quoted total
- facilitator: HTTP client for the facilitator API
- requirements: Payment requirements for the start of the flow
- settlement: Permit settlement with failure classification and retry
- entitlements: Time-boxed dataset access after settlement
- ratelimit / middleware: Per-IP rate limiting of the payment routes
- audit: Payment audit log for reconciliation

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
