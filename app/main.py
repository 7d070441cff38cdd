# app/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import logging
import uvicorn

from app.core.config import Settings, settings as default_settings
from app.api.endpoints import info, proxy
from app.services.solana_rpc import SolanaLedger
from app.x402.facilitator import PaymentFacilitator
from app.x402.pricing import load_price_rules
from app.x402.receipts import ReceiptStore

# Configure basic logging
logging.basicConfig(level=default_settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
}


def create_app(
    settings: Optional[Settings] = None,
    ledger=None,
    receipt_store: Optional[ReceiptStore] = None,
) -> FastAPI:
    """
    Build the facilitator application.

    The price table, ledger client, receipt store and payment facilitator are
    created once here and shared by all requests through app.state.

    Args:
        settings: Configuration (defaults to the environment settings)
        ledger: Solana ledger client (defaults to a SolanaLedger for SOLANA_RPC_URL)
        receipt_store: Receipt store (defaults to one with X402_RECEIPT_TTL_SECONDS)
    """
    settings = settings or default_settings
    if ledger is None:
        ledger = SolanaLedger(
            str(settings.SOLANA_RPC_URL),
            commitment=settings.SOLANA_COMMITMENT,
            rpc_timeout=settings.SOLANA_RPC_TIMEOUT_SECONDS,
            confirm_timeout=settings.SOLANA_CONFIRM_TIMEOUT_SECONDS,
            poll_interval=settings.SOLANA_CONFIRM_POLL_SECONDS,
        )
    if receipt_store is None:
        receipt_store = ReceiptStore(ttl_seconds=settings.X402_RECEIPT_TTL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"x402 Facilitator starting on port {settings.PORT}")
        logger.info(f"Network: {settings.NETWORK}")
        logger.info(f"Recipient: {settings.PAYMENT_RECIPIENT or '(not configured)'}")
        logger.info(f"Backend: {settings.backend_base_url}")
        yield
        await app.state.facilitator.drain_settlements()
        close = getattr(ledger, "close", None)
        if close is not None:
            await close()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    app.state.settings = settings
    app.state.price_rules = load_price_rules(settings.X402_PRICE_TABLE)
    app.state.receipt_store = receipt_store
    app.state.facilitator = PaymentFacilitator(
        network=settings.NETWORK,
        recipient=settings.PAYMENT_RECIPIENT,
        ledger=ledger,
        receipts=receipt_store,
    )

    origins = settings.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["PAYMENT-REQUIRED", "PAYMENT-RESPONSE"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    app.include_router(info.router)
    app.include_router(proxy.router, prefix="/x402", tags=["x402"])

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=default_settings.PORT, proxy_headers=True, forwarded_allow_ips="*")
