# app/core/config.py
from typing import List, Literal
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, BaseModel, Field # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

# Wrapped SOL mint, advertised as the asset for native lamport payments
NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"


class PriceRuleConfig(BaseModel):
    """One row of the price table as it appears in the environment (JSON)."""
    pattern: str
    price: int = Field(..., description="Price in lamports")
    description: str


DEFAULT_PRICE_TABLE = [
    PriceRuleConfig(pattern=r"/api/reports/risk/", price=1_000_000, description="Risk Analysis (0.001 SOL)"),
    PriceRuleConfig(pattern=r"/api/reports/rewards/", price=500_000, description="Rewards Detection (0.0005 SOL)"),
    PriceRuleConfig(pattern=r"/api/reports/il/", price=2_000_000, description="IL Simulation (0.002 SOL)"),
    PriceRuleConfig(pattern=r"/api/reports/yield/", price=1_500_000, description="Yield Analysis (0.0015 SOL)"),
]


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Facilitator"
    PORT: int = 3005
    LOG_LEVEL: str = "INFO"

    # Solana ledger
    SOLANA_RPC_URL: AnyHttpUrl = "https://api.devnet.solana.com"
    SOLANA_COMMITMENT: Literal["confirmed", "finalized"] = "confirmed"
    SOLANA_RPC_TIMEOUT_SECONDS: float = 10
    SOLANA_CONFIRM_TIMEOUT_SECONDS: float = 30
    SOLANA_CONFIRM_POLL_SECONDS: float = 0.5
    NETWORK: str = "solana-devnet"
    PAYMENT_RECIPIENT: str = ""

    # Content backend
    BACKEND_URL: AnyHttpUrl = "http://localhost:3004"
    BACKEND_TIMEOUT_SECONDS: float = 30

    # Comma-separated list, "*" allows any origin
    CORS_ORIGIN: str = "http://localhost:5173"

    # x402 protocol
    X402_ASSET: str = NATIVE_SOL_MINT
    X402_MAX_TIMEOUT_SECONDS: int = 300
    X402_RECEIPT_TTL_SECONDS: int = 300
    X402_PRICE_TABLE: List[PriceRuleConfig] = DEFAULT_PRICE_TABLE

    # Audit log
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def backend_base_url(self) -> str:
        """Backend URL without a trailing slash, ready for path concatenation."""
        return str(self.BACKEND_URL).rstrip("/")

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGIN.split(",") if origin.strip()]

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
