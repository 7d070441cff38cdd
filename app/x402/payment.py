# app/x402/payment.py
"""
x402 wire format: payment challenge and payment payload codec.

This module provides:
1. The pydantic models that travel over HTTP (PaymentRequirements,
   PaymentPayload, SettleResponse)
2. The 402 challenge builder (body + PAYMENT-REQUIRED header)
3. The X-Payment header decoder, which validates the version and scheme
   before looking at any other field
4. Deserialization of the embedded Solana transaction

Header values are base64-encoded JSON in both directions.
"""
import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from solders.signature import Signature
from solders.transaction import Transaction
from starlette.responses import JSONResponse

from app.x402.exceptions import (
    FacilitatorError,
    MalformedPayload,
    MissingNetwork,
    MissingTransaction,
    UnsupportedScheme,
    UnsupportedVersion,
)
from app.x402.pricing import PriceRule

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
EXACT_SCHEME = "exact"
X_PAYMENT_HEADER = "X-Payment"
PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"
PAYMENT_REQUIRED_ERROR = "Payment Required"

# Field names a client may use for the serialized transaction, preferred first
TRANSACTION_FIELDS = ("transaction", "serializedTransaction")


class X402Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PaymentRequirements(X402Model):
    """What the client must pay to access a resource."""
    scheme: str = EXACT_SCHEME
    network: str
    max_amount_required: str
    resource: str
    description: str
    mime_type: str = "application/json"
    pay_to: str
    max_timeout_seconds: int
    asset: str
    extra: Optional[Dict[str, Any]] = None


class PaymentPayload(X402Model):
    """A decoded X-Payment header, normalized to a single transaction field."""
    x402_version: int
    scheme: str
    network: str
    transaction: str


class SettleResponse(X402Model):
    """Proof of settlement returned to the client and forwarded to the backend."""
    success: bool
    payer: Optional[str] = None
    transaction: Optional[str] = None
    network: Optional[str] = None
    error_reason: Optional[str] = None


def encode_header(data: Dict[str, Any]) -> str:
    """Encode a JSON-serializable dict as a base64 header value."""
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("utf-8")


def decode_base64(value: str) -> bytes:
    """
    Decode standard or URL-safe base64, with or without padding.

    Raises:
        binascii.Error: If the value contains characters outside either alphabet
    """
    value = value.strip().replace("-", "+").replace("_", "/")
    return base64.b64decode(value + "=" * (-len(value) % 4), validate=True)


def encode_settle_response(settle_response: SettleResponse) -> str:
    """Encode a SettleResponse for the PAYMENT-RESPONSE / X-Payment-Settled headers."""
    return encode_header(settle_response.model_dump(by_alias=True, exclude_none=True))


def create_payment_requirements(
    rule: PriceRule,
    resource_url: str,
    network: str,
    pay_to: str,
    asset: str,
    max_timeout_seconds: int = 300,
) -> PaymentRequirements:
    """
    Create PaymentRequirements for a priced resource.

    Args:
        rule: The PriceRule matched for the request path
        resource_url: Canonical URL of the requested resource
        network: Network identifier (e.g. "solana-devnet")
        pay_to: Recipient address
        asset: Asset identifier advertised to the client
        max_timeout_seconds: Advertised payment window

    Returns:
        PaymentRequirements for the 402 response
    """
    if not pay_to:
        logger.warning("PAYMENT_RECIPIENT not configured")

    return PaymentRequirements(
        scheme=EXACT_SCHEME,
        network=network,
        max_amount_required=str(rule.price),
        resource=resource_url,
        description=rule.description,
        mime_type="application/json",
        pay_to=pay_to,
        max_timeout_seconds=max_timeout_seconds,
        asset=asset,
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: str = PAYMENT_REQUIRED_ERROR,
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required challenge.

    The same body is sent as JSON and, base64-encoded, in the
    PAYMENT-REQUIRED header.
    """
    response_body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [payment_requirements.model_dump(by_alias=True, exclude_none=True)],
    }

    return JSONResponse(
        status_code=402,
        content=response_body,
        headers={PAYMENT_REQUIRED_HEADER: encode_header(response_body)},
    )


def create_payment_error_response(error: FacilitatorError) -> JSONResponse:
    """Create the 402 response for a rejected payment."""
    return JSONResponse(
        status_code=error.status_code,
        content={"x402Version": X402_VERSION, "error": error.message},
    )


def decode_payment_header(header_value: str) -> PaymentPayload:
    """
    Decode and validate the X-Payment header.

    Validation order: base64, JSON object, x402Version, scheme, network,
    transaction bytes. Standard and URL-safe base64 are both accepted,
    padded or not. The transaction may arrive as `payload.transaction` or
    the legacy `payload.serializedTransaction`.

    Args:
        header_value: Base64-encoded payment payload

    Returns:
        PaymentPayload with the transaction normalized into `transaction`

    Raises:
        MalformedPayload: If the header is not base64 JSON object
        UnsupportedVersion: If x402Version is not 1
        UnsupportedScheme: If scheme is not "exact"
        MissingNetwork: If network is absent or empty
        MissingTransaction: If no transaction bytes are present
    """
    try:
        decoded = decode_base64(header_value).decode("utf-8")
        payload_dict = json.loads(decoded)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayload(f"could not decode X-Payment header: {e}") from e

    if not isinstance(payload_dict, dict):
        raise MalformedPayload("X-Payment header must encode a JSON object")

    version = payload_dict.get("x402Version")
    if isinstance(version, bool) or version != X402_VERSION:
        raise UnsupportedVersion(f"x402Version {version!r}")

    scheme = payload_dict.get("scheme")
    if scheme != EXACT_SCHEME:
        raise UnsupportedScheme(f"scheme {scheme!r}")

    network = payload_dict.get("network")
    if not isinstance(network, str) or not network:
        raise MissingNetwork()

    inner = payload_dict.get("payload")
    transaction = None
    if isinstance(inner, dict):
        for field in TRANSACTION_FIELDS:
            value = inner.get(field)
            if isinstance(value, str) and value:
                transaction = value
                break

    if transaction is None:
        raise MissingTransaction()

    return PaymentPayload(
        x402_version=version,
        scheme=scheme,
        network=network,
        transaction=transaction,
    )


def deserialize_transaction(payload: PaymentPayload) -> Tuple[Transaction, bytes]:
    """
    Parse the payload's transaction into a signed Solana transaction.

    Returns:
        Tuple of (transaction, raw_bytes). The raw bytes are exactly what the
        client signed and are what gets submitted for settlement.

    Raises:
        MalformedPayload: If the bytes do not parse or are not fully signed
    """
    try:
        raw_bytes = decode_base64(payload.transaction)
        transaction = Transaction.from_bytes(raw_bytes)
    except Exception as e:
        raise MalformedPayload(f"invalid transaction: {e}") from e

    required = transaction.message.header.num_required_signatures
    signatures = list(transaction.signatures)
    if required == 0 or len(signatures) < required:
        raise MalformedPayload("transaction is missing required signatures")
    if any(signature == Signature.default() for signature in signatures):
        raise MalformedPayload("transaction is not fully signed")

    return transaction, raw_bytes
