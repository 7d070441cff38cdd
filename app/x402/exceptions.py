# app/x402/exceptions.py
"""
Error taxonomy for the x402 payment pipeline.

Every failure a payment request can meet is one of four families:

- ClientInputError: the X-Payment header is malformed or asks for an
  unsupported version, scheme or network.
- PaymentInvalidError: the header is well formed but the transaction does not
  pay the recipient enough (or was already settled).
- LedgerError: the Solana node rejected the transaction during simulation,
  submission or confirmation.
- UpstreamError: the content backend could not be reached.

The first three are surfaced to the client as HTTP 402 with the error code in
the body; UpstreamError is the only one mapped to 502. None of them are
retried automatically.
"""
from typing import Optional


class FacilitatorError(Exception):
    """Base class for all facilitator errors."""

    code = "payment_error"
    status_code = 402

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        """Message returned to the client as the `error` field."""
        if self.detail:
            return f"{self.code}: {self.detail}"
        return self.code


# --- Client input errors ---

class ClientInputError(FacilitatorError):
    code = "invalid_payment_header"


class MalformedPayload(ClientInputError):
    code = "malformed_payload"


class UnsupportedVersion(ClientInputError):
    code = "unsupported_version"


class UnsupportedScheme(ClientInputError):
    code = "unsupported_scheme"


class MissingNetwork(ClientInputError):
    code = "missing_network"


class MissingTransaction(ClientInputError):
    code = "missing_transaction"


class NetworkMismatch(ClientInputError):
    code = "network_mismatch"

    def __init__(self, expected: str):
        self.expected = expected
        super().__init__(expected)

    @property
    def message(self) -> str:
        return f"Network mismatch: expected {self.expected}"


# --- Payment errors ---

class PaymentInvalidError(FacilitatorError):
    code = "payment_invalid"


class AmountInsufficient(PaymentInvalidError):
    code = "amount_insufficient"


class NoValidTransferToRecipient(PaymentInvalidError):
    code = "no_valid_transfer_to_recipient"


class VerificationError(PaymentInvalidError):
    code = "verification_error"


class TransactionAlreadyUsed(PaymentInvalidError):
    code = "transaction_already_used"


# --- Ledger errors ---

class LedgerError(FacilitatorError):
    code = "ledger_error"


class SimulationFailed(LedgerError):
    code = "simulation_failed"


class SubmissionRejected(LedgerError):
    code = "settlement_failed"


class ConfirmationFailed(LedgerError):
    code = "settlement_failed"

    @property
    def message(self) -> str:
        return f"settlement_failed: confirmation_failed: {self.detail or 'unknown'}"


# --- Upstream errors ---

class UpstreamError(FacilitatorError):
    code = "backend_unavailable"
    status_code = 502


# Invalid-reason strings produced by the verifier, mapped to their exceptions
INVALID_REASON_ERRORS = {
    AmountInsufficient.code: AmountInsufficient,
    NoValidTransferToRecipient.code: NoValidTransferToRecipient,
    VerificationError.code: VerificationError,
}
