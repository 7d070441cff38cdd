# app/services/solana_rpc.py
"""
Solana JSON-RPC access for simulation and settlement.

Every call is bounded by a timeout. Failures are raised as the ledger errors
of app.x402.exceptions so the payment pipeline can report them to the client;
nothing here retries a payment.
"""
import asyncio
import logging
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed, Finalized
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from app.x402.exceptions import ConfirmationFailed, SimulationFailed, SubmissionRejected

logger = logging.getLogger(__name__)

# Statuses that satisfy each supported commitment level
ACCEPTED_STATUSES = {
    "confirmed": (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized),
    "finalized": (TransactionConfirmationStatus.Finalized,),
}

COMMITMENTS = {
    "confirmed": Confirmed,
    "finalized": Finalized,
}


class SolanaLedger:
    """Thin async wrapper over a Solana RPC node."""

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        rpc_timeout: float = 10,
        confirm_timeout: float = 30,
        poll_interval: float = 0.5,
        client: Optional[AsyncClient] = None,
    ):
        if commitment not in COMMITMENTS:
            raise ValueError(f"Unsupported commitment level: {commitment}")

        self.rpc_url = rpc_url
        self.commitment = commitment
        self.rpc_timeout = rpc_timeout
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self._client = client

    @property
    def client(self) -> AsyncClient:
        """Lazy initialization of the RPC client."""
        if self._client is None:
            self._client = AsyncClient(
                self.rpc_url,
                commitment=self._commitment,
                timeout=self.rpc_timeout,
            )
        return self._client

    @property
    def _commitment(self) -> Commitment:
        return COMMITMENTS[self.commitment]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def get_balance(self, address: str) -> int:
        """
        Get the lamport balance of an account.

        Raises:
            Exception: If the RPC call fails or times out
        """
        resp = await asyncio.wait_for(
            self.client.get_balance(Pubkey.from_string(address), commitment=self._commitment),
            timeout=self.rpc_timeout,
        )
        return resp.value

    async def simulate(self, transaction: Transaction) -> None:
        """
        Dry-run a signed transaction against current ledger state.

        Raises:
            SimulationFailed: If the node reports an error or cannot be reached
        """
        try:
            resp = await asyncio.wait_for(
                self.client.simulate_transaction(transaction, sig_verify=True, commitment=self._commitment),
                timeout=self.rpc_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SimulationFailed(f"timed out after {self.rpc_timeout}s") from e
        except Exception as e:
            logger.error(f"Solana simulation request failed ({self.rpc_url}): {e}")
            raise SimulationFailed(str(e)) from e

        err = resp.value.err
        if err is not None:
            logs = resp.value.logs or []
            logger.info(f"x402: Simulation rejected transaction: {err} (logs: {logs[-3:]})")
            raise SimulationFailed(str(err))

    async def settle(self, raw_transaction: bytes) -> str:
        """
        Submit the client's exact transaction bytes and wait for confirmation.

        Args:
            raw_transaction: Serialized, fully signed transaction

        Returns:
            The transaction signature

        Raises:
            SubmissionRejected: If the node refuses the transaction or times out
            ConfirmationFailed: If the transaction fails on-chain or is not
                confirmed within the confirmation timeout
        """
        signature = await self._submit(raw_transaction)
        logger.info(f"x402: Transaction submitted: {signature}")
        await self._confirm(signature)
        return str(signature)

    async def _submit(self, raw_transaction: bytes) -> Signature:
        opts = TxOpts(skip_preflight=False, preflight_commitment=self._commitment)
        try:
            resp = await asyncio.wait_for(
                self.client.send_raw_transaction(raw_transaction, opts=opts),
                timeout=self.rpc_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SubmissionRejected(f"submission timed out after {self.rpc_timeout}s") from e
        except Exception as e:
            logger.error(f"Solana sendTransaction failed ({self.rpc_url}): {e}")
            raise SubmissionRejected(str(e)) from e

        return resp.value

    async def _confirm(self, signature: Signature) -> None:
        accepted = ACCEPTED_STATUSES[self.commitment]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout

        while True:
            try:
                resp = await asyncio.wait_for(
                    self.client.get_signature_statuses([signature]),
                    timeout=self.rpc_timeout,
                )
                status = resp.value[0] if resp.value else None
            except asyncio.TimeoutError:
                logger.warning(f"x402: Signature status poll timed out for {signature}")
                status = None
            except Exception as e:
                logger.warning(f"x402: Signature status poll failed for {signature}: {e}")
                status = None

            if status is not None:
                if status.err is not None:
                    raise ConfirmationFailed(str(status.err))
                if status.confirmation_status in accepted:
                    return

            if loop.time() >= deadline:
                raise ConfirmationFailed(
                    f"not {self.commitment} within {self.confirm_timeout}s"
                )
            await asyncio.sleep(self.poll_interval)
