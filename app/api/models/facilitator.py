# app/api/models/facilitator.py
from pydantic import BaseModel, Field
from typing import List, Optional


class HealthResponse(BaseModel):
    """
    Response model for the health check endpoint.
    """
    status: str = "healthy"
    service: str = "x402-facilitator"
    network: str
    recipient: str
    backendUrl: str


class ProtectedResource(BaseModel):
    """A priced resource as advertised by the protocol info endpoint."""
    pattern: str = Field(..., description="Regular expression matched against the resource path")
    price: int = Field(..., description="Price in lamports")
    description: str


class ProtocolInfoResponse(BaseModel):
    """
    Response model for the x402 protocol info endpoint.
    """
    protocol: str = "x402"
    version: int = 1
    type: str = "external-facilitator"
    description: str = "Verifies Solana payments and proxies to content backend"
    network: str
    recipient: str
    recipientBalance: Optional[int] = Field(
        default=None,
        description="Recipient balance in lamports, if the RPC node answered"
    )
    protectedResources: List[ProtectedResource]


class ReceiptResponse(BaseModel):
    """Response model for a live settlement receipt."""
    signature: str
    payer: str
    amount: int = Field(..., description="Amount paid in lamports")
    resource: str
    timestamp: float
    expiresAt: float
