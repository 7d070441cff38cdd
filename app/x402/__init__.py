# app/x402/__init__.py
"""
x402 Payment Facilitator Module.

This module implements the x402 "exact" scheme for native SOL payments,
turning requests for priced resources into 402 challenges or into verified,
on-chain-settled pass-throughs to the content backend.

Key components:
- pricing: Price table and resource classification
- payment: 402 challenge builder and X-Payment header codec
- verifier: Offline check of the transfer to the recipient
- facilitator: Decode -> verify -> simulate -> settle -> record pipeline
- receipts: Short-lived store of settled signatures
- relay: Forwarding to the content backend with proof of payment
- audit: Payment audit logging
- exceptions: Error taxonomy

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
