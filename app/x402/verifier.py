# app/x402/verifier.py
"""
Offline verification of a client-signed Solana payment transaction.

The verifier looks for a System Program Transfer instruction that pays the
facilitator's recipient at least the required number of lamports. It makes no
network calls and is deterministic given the transaction bytes.

System Program Transfer instruction layout:
    data:     [opcode: u32 LE = 2][lamports: u64 LE]
    accounts: [source (signer, writable), destination (writable)]
"""
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from app.x402.exceptions import AmountInsufficient, NoValidTransferToRecipient, VerificationError

logger = logging.getLogger(__name__)

SYSTEM_TRANSFER_OPCODE = 2
TRANSFER_DATA_LENGTH = 12  # u32 opcode + u64 lamports


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one payment transaction."""
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None
    amount: Optional[int] = None


def verify_transfer(
    transaction: Transaction,
    recipient: Pubkey,
    required_amount: int,
) -> VerificationResult:
    """
    Verify that a transaction pays `recipient` at least `required_amount` lamports.

    Instructions are scanned in order. The first System Program transfer to the
    recipient decides the outcome: enough lamports makes the transaction valid,
    too few makes it invalid without looking at later instructions. Other
    instructions are ignored.

    The payer is the fee payer (the key behind the first signature), not the
    transfer's source account.

    Args:
        transaction: Deserialized, signed transaction
        recipient: The facilitator's configured recipient
        required_amount: Minimum lamports for the requested resource

    Returns:
        VerificationResult; invalid_reason is one of "amount_insufficient",
        "no_valid_transfer_to_recipient" or "verification_error: <detail>"
    """
    try:
        message = transaction.message
        account_keys = message.account_keys

        for instruction in message.instructions:
            if account_keys[instruction.program_id_index] != SYSTEM_PROGRAM_ID:
                continue

            data = bytes(instruction.data)
            if len(data) < 4:
                raise ValueError(f"system instruction data too short ({len(data)} bytes)")
            (opcode,) = struct.unpack_from("<I", data, 0)
            if opcode != SYSTEM_TRANSFER_OPCODE:
                continue

            if len(data) < TRANSFER_DATA_LENGTH:
                raise ValueError(f"transfer data too short ({len(data)} bytes)")
            (amount,) = struct.unpack_from("<Q", data, 4)

            accounts = bytes(instruction.accounts)
            if len(accounts) < 2:
                continue
            destination = account_keys[accounts[1]]

            if destination != recipient:
                continue

            if amount >= required_amount:
                payer = str(account_keys[0])
                logger.debug(f"x402: Found transfer of {amount} lamports from {payer}")
                return VerificationResult(is_valid=True, payer=payer, amount=amount)

            logger.info(f"x402: Transfer of {amount} lamports is below required {required_amount}")
            return VerificationResult(
                is_valid=False,
                invalid_reason=AmountInsufficient.code,
                amount=amount,
            )

    except (IndexError, ValueError, struct.error) as e:
        return VerificationResult(
            is_valid=False,
            invalid_reason=f"{VerificationError.code}: {e}",
        )

    return VerificationResult(
        is_valid=False,
        invalid_reason=NoValidTransferToRecipient.code,
    )
