# tests/conftest.py
"""
Shared fixtures for the facilitator tests.

Transactions are real, signed Solana legacy transactions built with solders
from fixed seeds. The ledger is replaced by FakeLedger, which records every
call so tests can assert on ordering and on calls that must not happen.
"""
import base64
import json
from typing import List, Optional, Sequence, Tuple

import pytest
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from app.core.config import Settings, settings as global_settings
from app.main import create_app
from app.x402.receipts import ReceiptStore

NETWORK = "solana-devnet"
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")


class FakeLedger:
    """Stands in for SolanaLedger; counts calls and can be told to fail."""

    def __init__(self, simulate_error=None, settle_error=None, balance: int = 5_000_000_000):
        self.simulate_error = simulate_error
        self.settle_error = settle_error
        self.balance = balance
        self.calls: List[str] = []
        self.settled_bytes: List[bytes] = []

    @property
    def simulate_calls(self) -> int:
        return self.calls.count("simulate")

    @property
    def settle_calls(self) -> int:
        return self.calls.count("settle")

    async def simulate(self, transaction):
        self.calls.append("simulate")
        if self.simulate_error is not None:
            raise self.simulate_error

    async def settle(self, raw_transaction: bytes) -> str:
        self.calls.append("settle")
        self.settled_bytes.append(raw_transaction)
        if self.settle_error is not None:
            raise self.settle_error
        return str(Transaction.from_bytes(raw_transaction).signatures[0])

    async def get_balance(self, address: str) -> int:
        self.calls.append("get_balance")
        return self.balance

    async def close(self):
        self.calls.append("close")


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path, monkeypatch):
    """Send audit events to a per-test file."""
    path = tmp_path / "logs" / "x402_audit.jsonl"
    monkeypatch.setattr(global_settings, "X402_AUDIT_LOG_PATH", str(path))
    monkeypatch.setattr(global_settings, "X402_AUDIT_ENABLED", True)
    return path


@pytest.fixture
def payer_keypair() -> Keypair:
    return Keypair.from_seed(bytes([1] * 32))


@pytest.fixture
def recipient_pubkey() -> Pubkey:
    return Keypair.from_seed(bytes([3] * 32)).pubkey()


@pytest.fixture
def other_pubkey() -> Pubkey:
    return Keypair.from_seed(bytes([4] * 32)).pubkey()


@pytest.fixture
def build_transaction(payer_keypair):
    """
    Build a signed transaction.

    transfers: (destination, lamports) pairs, in instruction order
    extra: additional instructions appended after the transfers
    memo: adds a memo instruction first, which also makes transactions unique
    """
    def _build(
        transfers: Sequence[Tuple[Pubkey, int]] = (),
        extra: Sequence[Instruction] = (),
        memo: Optional[str] = None,
        fee_payer: Optional[Keypair] = None,
    ) -> Transaction:
        instructions = []
        if memo is not None:
            instructions.append(Instruction(MEMO_PROGRAM_ID, memo.encode("utf-8"), []))
        for destination, lamports in transfers:
            instructions.append(transfer(TransferParams(
                from_pubkey=payer_keypair.pubkey(),
                to_pubkey=destination,
                lamports=lamports,
            )))
        instructions.extend(extra)

        signers = [payer_keypair]
        payer = payer_keypair.pubkey()
        if fee_payer is not None:
            signers = [fee_payer, payer_keypair]
            payer = fee_payer.pubkey()

        return Transaction.new_signed_with_payer(instructions, payer, signers, Hash.default())

    return _build


@pytest.fixture
def make_payment_header():
    """Encode a transaction (or raw fields) as an X-Payment header value."""
    def _make(
        transaction: Optional[Transaction] = None,
        version=1,
        scheme: str = "exact",
        network: Optional[str] = NETWORK,
        field: str = "transaction",
        payload: Optional[dict] = None,
    ) -> str:
        body = {"x402Version": version, "scheme": scheme}
        if network is not None:
            body["network"] = network
        if payload is not None:
            body["payload"] = payload
        elif transaction is not None:
            body["payload"] = {field: base64.b64encode(bytes(transaction)).decode("utf-8")}
        return base64.b64encode(json.dumps(body).encode("utf-8")).decode("utf-8")

    return _make


@pytest.fixture
def test_settings(recipient_pubkey) -> Settings:
    return Settings(
        PAYMENT_RECIPIENT=str(recipient_pubkey),
        NETWORK=NETWORK,
        BACKEND_URL="http://backend.test",
        CORS_ORIGIN="*",
    )


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def receipt_store() -> ReceiptStore:
    return ReceiptStore()


@pytest.fixture
def test_app(test_settings, fake_ledger, receipt_store):
    return create_app(settings=test_settings, ledger=fake_ledger, receipt_store=receipt_store)
