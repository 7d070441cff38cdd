# app/x402/facilitator.py
"""
The x402 payment pipeline.

PaymentFacilitator takes the raw X-Payment header for a priced resource and
either returns proof of an on-chain settlement or raises one of the errors in
app.x402.exceptions. The steps always run in this order:

1. Decode the header (version and scheme checked first)
2. Check the network and deserialize the signed transaction
3. Reject signatures that already have a live receipt
4. Verify the transfer to the recipient offline
5. Simulate against the ledger
6. Submit and wait for confirmation
7. Record the receipt

Steps 6 and 7 run in a separate task that outlives the request, so a client
that disconnects mid-settlement still gets a receipt and an audit trail.

Nothing is retried: a failed payment needs a new transaction from the client.
"""
import asyncio
import logging
from typing import Optional, Set, Tuple

from solders.pubkey import Pubkey

from app.x402 import audit
from app.x402.exceptions import (
    INVALID_REASON_ERRORS,
    FacilitatorError,
    NetworkMismatch,
    TransactionAlreadyUsed,
    VerificationError,
)
from app.x402.payment import SettleResponse, decode_payment_header, deserialize_transaction
from app.x402.pricing import PriceRule
from app.x402.receipts import ReceiptStore, SettlementRecord
from app.x402.verifier import verify_transfer

logger = logging.getLogger(__name__)


class PaymentFacilitator:
    """
    Verifies and settles x402 payments for one network and recipient.

    The ledger must provide `async simulate(transaction)` and
    `async settle(raw_bytes) -> signature` (see app.services.solana_rpc).
    """

    def __init__(self, network: str, recipient: str, ledger, receipts: ReceiptStore):
        """
        Raises:
            ValueError: If recipient is set but is not a valid Solana address
        """
        self.network = network
        self.recipient = recipient
        self.ledger = ledger
        self.receipts = receipts
        self._recipient_key: Optional[Pubkey] = Pubkey.from_string(recipient) if recipient else None
        # Settlements still running, including ones whose request was cancelled
        self._settlements: Set["asyncio.Task[SettlementRecord]"] = set()

        if self._recipient_key is None:
            logger.warning("PAYMENT_RECIPIENT not configured - all payments will be rejected")

    @property
    def pending_settlements(self) -> int:
        return len(self._settlements)

    async def drain_settlements(self) -> None:
        """Wait for every in-flight settlement to finish recording."""
        if self._settlements:
            logger.info(f"x402: Waiting for {len(self._settlements)} in-flight settlement(s)")
            await asyncio.gather(*self._settlements, return_exceptions=True)

    async def process_payment(
        self,
        payment_header: str,
        rule: PriceRule,
        resource_path: str,
        request_id: Optional[str] = None,
    ) -> Tuple[SettlementRecord, SettleResponse]:
        """
        Run the full payment pipeline for one request.

        Once the transaction is submitted, settlement and receipt recording
        run in their own task. Cancelling the caller (client disconnect) does
        not stop them: the receipt and audit events are still written.

        Args:
            payment_header: Raw X-Payment header value
            rule: PriceRule matched for the resource
            resource_path: Resource path, recorded on the receipt
            request_id: Audit correlation id

        Returns:
            Tuple of (stored receipt, settlement proof for the client)

        Raises:
            FacilitatorError: Any client input, payment or ledger failure
        """
        stage = "decode"
        payer = None
        signature = None
        try:
            payload = decode_payment_header(payment_header)
            audit.log_payment_received(resource_path, payload.network, rule.price, request_id=request_id)

            if payload.network != self.network:
                raise NetworkMismatch(self.network)

            transaction, raw_bytes = deserialize_transaction(payload)
            signature = str(transaction.signatures[0])

            stage = "replay"
            if self.receipts.is_used(signature):
                raise TransactionAlreadyUsed(signature)

            stage = "verify"
            if self._recipient_key is None:
                raise VerificationError("payment recipient not configured")

            result = verify_transfer(transaction, self._recipient_key, rule.price)
            audit.log_payment_verified(
                resource_path,
                payer=result.payer,
                is_valid=result.is_valid,
                amount=result.amount,
                invalid_reason=result.invalid_reason,
                request_id=request_id,
            )
            if not result.is_valid:
                code, _, detail = result.invalid_reason.partition(": ")
                raise INVALID_REASON_ERRORS.get(code, VerificationError)(detail or None)
            payer = result.payer

            stage = "simulate"
            await self.ledger.simulate(transaction)

        except FacilitatorError as e:
            self._log_failure(resource_path, e, stage, payer, signature, request_id)
            raise

        task = asyncio.ensure_future(self._settle_and_record(
            raw_bytes, signature, payer, result.amount, resource_path, request_id,
        ))
        self._settlements.add(task)
        task.add_done_callback(self._settlement_done)

        record = await asyncio.shield(task)

        settle_response = SettleResponse(
            success=True,
            payer=payer,
            transaction=record.signature,
            network=self.network,
        )
        return record, settle_response

    async def _settle_and_record(
        self,
        raw_bytes: bytes,
        signature: str,
        payer: str,
        amount: int,
        resource_path: str,
        request_id: Optional[str],
    ) -> SettlementRecord:
        try:
            signature = await self.ledger.settle(raw_bytes)
        except FacilitatorError as e:
            self._log_failure(resource_path, e, "settle", payer, signature, request_id)
            raise

        logger.info(f"x402: Payment settled: {signature} ({amount} lamports from {payer})")
        audit.log_payment_settled(resource_path, payer, signature, self.network, amount, request_id=request_id)

        record = self.receipts.store(signature, payer, amount, resource_path)
        audit.log_receipt_stored(resource_path, payer, signature, record.expires_at, request_id=request_id)
        return record

    def _settlement_done(self, task: "asyncio.Task[SettlementRecord]") -> None:
        self._settlements.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, FacilitatorError):
            logger.error(f"x402: Settlement task failed unexpectedly: {error!r}")

    @staticmethod
    def _log_failure(
        resource_path: str,
        error: FacilitatorError,
        stage: str,
        payer: Optional[str],
        signature: Optional[str],
        request_id: Optional[str],
    ) -> None:
        logger.warning(f"x402: Payment failed at {stage} for {resource_path}: {error.message}"
                       + (f" (signature {signature})" if signature else ""))
        audit.log_payment_failed(
            resource_path,
            reason=error.message,
            stage=stage,
            payer=payer,
            signature=signature,
            request_id=request_id,
        )
