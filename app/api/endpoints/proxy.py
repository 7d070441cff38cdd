# app/api/endpoints/proxy.py
"""
The x402 proxy endpoint.

Per request:
1. Classify the resource path against the price table
2. Unprotected: relay to the backend directly
3. Protected without X-Payment: return the 402 challenge
4. Protected with X-Payment: decode, verify, simulate, settle, record the
   receipt, then relay with proof of payment

Every path ends in exactly one response. Payment failures are 402 with the
failure code in `error`; only backend failures are 502.
"""
from typing import List

from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse
import logging

from app.api.deps import get_app_settings, get_facilitator, get_price_rules
from app.core.config import Settings
from app.x402 import audit
from app.x402.exceptions import FacilitatorError
from app.x402.facilitator import PaymentFacilitator
from app.x402.payment import (
    X_PAYMENT_HEADER,
    create_402_response,
    create_payment_error_response,
    create_payment_requirements,
)
from app.x402.pricing import PriceRule, find_price_rule, lamports_to_sol
from app.x402.relay import relay_to_backend

logger = logging.getLogger(__name__)

router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route("/proxy/{resource_path:path}", methods=PROXY_METHODS)
async def proxy_resource(
    resource_path: str,
    request: Request,
    settings: Settings = Depends(get_app_settings),
    price_rules: List[PriceRule] = Depends(get_price_rules),
    facilitator: PaymentFacilitator = Depends(get_facilitator),
) -> JSONResponse:
    """
    Proxy a request to the content backend, charging for priced resources.

    Returns:
        The backend response, a 402 challenge or payment error, or a 502
    """
    target_path = "/" + resource_path
    request_id = audit.generate_request_id()
    body = await request.body()
    params = list(request.query_params.multi_items())

    relay_args = dict(
        method=request.method,
        resource_path=target_path,
        backend_url=settings.backend_base_url,
        body=body,
        params=params,
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
        request_id=request_id,
    )

    rule = find_price_rule(target_path, price_rules)
    if rule is None:
        return await relay_to_backend(**relay_args)

    payment_header = request.headers.get(X_PAYMENT_HEADER)
    if not payment_header:
        resource_url = str(request.url)
        requirements = create_payment_requirements(
            rule,
            resource_url=resource_url,
            network=settings.NETWORK,
            pay_to=settings.PAYMENT_RECIPIENT,
            asset=settings.X402_ASSET,
            max_timeout_seconds=settings.X402_MAX_TIMEOUT_SECONDS,
        )
        logger.info(f"x402: No X-Payment header, returning 402 for {rule.price} lamports "
                    f"({lamports_to_sol(rule.price)} SOL) for {target_path}")
        audit.log_payment_required_sent(
            target_path,
            resource_url=resource_url,
            price=rule.price,
            network=settings.NETWORK,
            pay_to=settings.PAYMENT_RECIPIENT,
            request_id=request_id,
        )
        return create_402_response(requirements)

    try:
        _, settle_response = await facilitator.process_payment(
            payment_header,
            rule,
            resource_path=target_path,
            request_id=request_id,
        )
    except FacilitatorError as e:
        return create_payment_error_response(e)

    return await relay_to_backend(settle_response=settle_response, **relay_args)
