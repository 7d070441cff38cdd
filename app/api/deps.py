# app/api/deps.py
"""Request-scoped access to the collaborators created with the application."""
from typing import List

from fastapi import Request

from app.core.config import Settings
from app.x402.facilitator import PaymentFacilitator
from app.x402.pricing import PriceRule
from app.x402.receipts import ReceiptStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_price_rules(request: Request) -> List[PriceRule]:
    return request.app.state.price_rules


def get_facilitator(request: Request) -> PaymentFacilitator:
    return request.app.state.facilitator


def get_receipt_store(request: Request) -> ReceiptStore:
    return request.app.state.receipt_store
