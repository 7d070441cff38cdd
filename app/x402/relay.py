# app/x402/relay.py
"""
Relay of paid (and free) requests to the content backend.

Every forwarded request carries X-Facilitator-Verified so the backend can
trust it came through the facilitator. When a payment was settled the request
also carries X-Payment-Settled, the response gets a PAYMENT-RESPONSE header,
and a successful JSON body gets paymentVerified/paymentDetails injected into
its `data` object.
"""
import copy
import logging
from typing import Any, Dict, Mapping, Optional

from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from app.services.backend_api import forward_request
from app.x402 import audit
from app.x402.exceptions import UpstreamError
from app.x402.payment import PAYMENT_RESPONSE_HEADER, SettleResponse, encode_settle_response

logger = logging.getLogger(__name__)

FACILITATOR_VERIFIED_HEADER = "X-Facilitator-Verified"
PAYMENT_SETTLED_HEADER = "X-Payment-Settled"

EXPLORER_BASE_URL = "https://explorer.solana.com/tx"

# Explorer cluster query parameter per network; mainnet needs none
EXPLORER_CLUSTERS = {
    "solana-devnet": "devnet",
    "solana-testnet": "testnet",
}


def get_explorer_url(signature: str, network: str) -> str:
    """Block explorer link for a transaction signature."""
    cluster = EXPLORER_CLUSTERS.get(network)
    if cluster:
        return f"{EXPLORER_BASE_URL}/{signature}?cluster={cluster}"
    return f"{EXPLORER_BASE_URL}/{signature}"


def build_backend_headers(settle_response: Optional[SettleResponse] = None) -> Dict[str, str]:
    """Headers sent with every relayed request."""
    headers = {
        "Content-Type": "application/json",
        FACILITATOR_VERIFIED_HEADER: "true",
    }
    if settle_response is not None:
        headers[PAYMENT_SETTLED_HEADER] = encode_settle_response(settle_response)
    return headers


def inject_payment_details(body: Any, settle_response: SettleResponse) -> Any:
    """
    Add payment proof to a successful backend body.

    Only bodies shaped like {"success": true, "data": {...}} are modified;
    anything else is returned unchanged. The input is not mutated.
    """
    if not isinstance(body, dict) or not body.get("success") or not isinstance(body.get("data"), dict):
        return body

    body = copy.deepcopy(body)
    body["data"]["paymentVerified"] = True
    body["data"]["paymentDetails"] = {
        "signature": settle_response.transaction,
        "payer": settle_response.payer,
        "explorerUrl": get_explorer_url(settle_response.transaction, settle_response.network),
    }
    return body


def create_backend_unavailable_response() -> JSONResponse:
    return JSONResponse(status_code=502, content={"success": False, "error": "Backend unavailable"})


async def relay_to_backend(
    method: str,
    resource_path: str,
    backend_url: str,
    body: Optional[bytes] = None,
    params: Optional[Mapping[str, str]] = None,
    timeout: float = 30,
    settle_response: Optional[SettleResponse] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """
    Forward a request to the backend and build the response for the caller.

    Args:
        method: HTTP method of the original request
        resource_path: Path on the backend (proxy prefix already removed)
        backend_url: Backend base URL without a trailing slash
        body: Raw request body
        params: Query string parameters
        timeout: Backend timeout in seconds
        settle_response: Settlement proof, if the request was paid
        request_id: Audit correlation id

    Returns:
        The backend's status and JSON body (annotated when paid), or 502 if
        the backend is unavailable
    """
    logger.info(f"Proxying to: {backend_url}{resource_path}")

    try:
        status_code, data = await run_in_threadpool(
            forward_request,
            method,
            backend_url,
            resource_path,
            build_backend_headers(settle_response),
            body,
            params,
            timeout,
        )
    except UpstreamError as e:
        logger.error(f"Proxy error for {method} {resource_path}: {e.message}")
        audit.log_error(
            resource_path,
            error_type="backend_unavailable",
            error_message=e.message,
            context={"method": method, "settled": settle_response is not None},
            request_id=request_id,
        )
        return create_backend_unavailable_response()

    headers = {}
    if settle_response is not None:
        headers[PAYMENT_RESPONSE_HEADER] = encode_settle_response(settle_response)
        data = inject_payment_details(data, settle_response)

    audit.log_backend_relayed(
        resource_path,
        method=method,
        status_code=status_code,
        settled=settle_response is not None,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=data, headers=headers)
