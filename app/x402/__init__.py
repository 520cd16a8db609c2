# app/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module puts the RapidAPI proxy routes behind the x402 payment protocol,
enabling pay-per-request access to each catalog service.

Key components:
- middleware: FastAPI middleware for payment verification and settlement
- discovery: Discovery manifest listing payable resources for registries

Prices, network and payee come from the service catalog (services.json);
the facilitator URL and payment bypass switch from app.core.config.
"""

__version__ = "0.1.0"
