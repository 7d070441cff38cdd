# app/api/endpoints/info.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException
import logging

from app.api.deps import get_app_settings, get_facilitator, get_price_rules, get_receipt_store
from app.api.models.facilitator import (
    HealthResponse,
    ProtectedResource,
    ProtocolInfoResponse,
    ReceiptResponse,
)
from app.core.config import Settings
from app.x402.facilitator import PaymentFacilitator
from app.x402.payment import X402_VERSION
from app.x402.pricing import PriceRule
from app.x402.receipts import ReceiptStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["default"])
async def health(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """ Basic health check endpoint. """
    return HealthResponse(
        network=settings.NETWORK,
        recipient=settings.PAYMENT_RECIPIENT,
        backendUrl=settings.backend_base_url,
    )


@router.get("/x402", response_model=ProtocolInfoResponse, tags=["x402"])
async def protocol_info(
    settings: Settings = Depends(get_app_settings),
    price_rules: List[PriceRule] = Depends(get_price_rules),
    facilitator: PaymentFacilitator = Depends(get_facilitator),
) -> ProtocolInfoResponse:
    """
    Describe the facilitator and its priced resources.

    The recipient balance is best effort: it is omitted if the RPC node does
    not answer.
    """
    balance = None
    if settings.PAYMENT_RECIPIENT:
        try:
            balance = await facilitator.ledger.get_balance(settings.PAYMENT_RECIPIENT)
        except Exception as e:
            logger.warning(f"Failed to fetch recipient balance: {e}")

    return ProtocolInfoResponse(
        version=X402_VERSION,
        network=settings.NETWORK,
        recipient=settings.PAYMENT_RECIPIENT,
        recipientBalance=balance,
        protectedResources=[ProtectedResource(**rule.to_dict()) for rule in price_rules],
    )


@router.get("/x402/receipts/{signature}", response_model=ReceiptResponse, tags=["x402"])
async def get_receipt(
    signature: str,
    receipts: ReceiptStore = Depends(get_receipt_store),
) -> ReceiptResponse:
    """
    Look up a live settlement receipt.

    Raises:
        HTTPException: 404 if the signature is unknown or its receipt expired
    """
    record = receipts.get(signature)
    if record is None:
        raise HTTPException(status_code=404, detail="Receipt not found or expired")
    return ReceiptResponse(**record.to_dict())
