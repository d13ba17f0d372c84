"""
Submission pipeline for signed transactions.

Hands a fully signed transaction to the ledger under a retry envelope, then
makes a bounded, best-effort attempt to observe its confirmation.

A returned transaction id means "accepted for broadcast". Confirmation is
reported when seen, but an unconfirmed transaction is not an error: durable
nonce transactions can land well after the confirmation window closes.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from solders.signature import Signature
from solders.transaction import VersionedTransaction

from wren.config import Settings
from wren.core.retry import RetryEnvelope, Sentinel

from .models import (
    SubmissionError,
    SubmissionReceipt,
    SubmitErrorKind,
    TransactionStatus,
)
from .solana_rpc import SolanaRpcClient
from .tx_builder import decode_transaction

logger = logging.getLogger(__name__)

EXHAUSTED = Sentinel("EXHAUSTED")
UNCONFIRMED = Sentinel("UNCONFIRMED")

_SETTLED_COMMITMENTS = {"confirmed", "finalized"}


class SubmissionPipeline:
    """
    Submits signed transactions to the ledger.

    Usage:
        pipeline = SubmissionPipeline(rpc)
        receipt = await pipeline.submit(signed_b64)
        receipt.transaction_id, receipt.status
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        envelope: Optional[RetryEnvelope] = None,
        max_attempts: int = 2,
        per_attempt_timeout: float = 5.0,
        retry_interval: float = 0.0,
        send_max_retries: int = 2,
        confirm_timeout: float = 3.0,
        poll_interval: float = 0.5,
    ):
        self._rpc = rpc
        self._envelope = envelope or RetryEnvelope(logger)
        self._max_attempts = max_attempts
        self._per_attempt_timeout = per_attempt_timeout
        self._retry_interval = retry_interval
        self._send_max_retries = send_max_retries
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval

    @classmethod
    def from_settings(cls, rpc: SolanaRpcClient, settings: Settings) -> "SubmissionPipeline":
        return cls(
            rpc,
            max_attempts=settings.submit_max_attempts,
            per_attempt_timeout=settings.submit_timeout_seconds,
            retry_interval=settings.submit_retry_interval_seconds,
            send_max_retries=settings.send_max_retries,
            confirm_timeout=settings.confirm_timeout_seconds,
        )

    async def submit(
        self,
        signed_transaction: str,
        confirm_timeout: Optional[float] = None,
    ) -> SubmissionReceipt:
        """
        Submit a base64 encoded, fully signed transaction.

        Args:
            signed_transaction: Base64 serialized VersionedTransaction
            confirm_timeout: Seconds to wait for confirmation (default from config)

        Returns:
            SubmissionReceipt with the transaction id and observed status

        Raises:
            SubmissionError: MALFORMED before any ledger call, EXHAUSTED when
                every send attempt failed
        """
        try:
            tx = decode_transaction(signed_transaction)
        except ValueError as e:
            raise SubmissionError(SubmitErrorKind.MALFORMED, str(e)) from e
        return await self.submit_transaction(tx, confirm_timeout=confirm_timeout)

    async def submit_transaction(
        self,
        tx: VersionedTransaction,
        confirm_timeout: Optional[float] = None,
    ) -> SubmissionReceipt:
        """Submit an already decoded transaction (server-signed paths)."""
        _require_signatures(tx)
        raw = bytes(tx)

        result = await self._envelope.run(
            lambda: self._rpc.send_raw_transaction(raw, max_retries=self._send_max_retries),
            max_attempts=self._max_attempts,
            per_attempt_timeout=self._per_attempt_timeout,
            fallback=EXHAUSTED,
            interval=self._retry_interval,
        )
        if result is EXHAUSTED:
            logger.error("Transaction submission exhausted after %d attempts", self._max_attempts)
            raise SubmissionError(
                SubmitErrorKind.EXHAUSTED,
                f"sendTransaction failed {self._max_attempts} times",
            )

        signature: str = result
        timeout = self._confirm_timeout if confirm_timeout is None else confirm_timeout
        status, error = await self._confirm(signature, timeout)

        if status == TransactionStatus.SUBMITTED:
            logger.warning("transaction_unconfirmed: %s not confirmed within %.1fs", signature, timeout)
        elif status == TransactionStatus.FAILED:
            logger.warning("Transaction %s failed on ledger: %s", signature, error)
        else:
            logger.info("Transaction %s confirmed", signature)

        return SubmissionReceipt(transaction_id=signature, status=status, error=error)

    async def _confirm(self, signature: str, timeout: float) -> Tuple[TransactionStatus, Optional[str]]:
        if timeout <= 0:
            return TransactionStatus.SUBMITTED, None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        outcome = await self._envelope.run(
            lambda: self._poll_until_settled(signature, deadline),
            max_attempts=1,
            per_attempt_timeout=timeout,
            fallback=UNCONFIRMED,
        )
        if outcome is UNCONFIRMED:
            return TransactionStatus.SUBMITTED, None
        return outcome

    async def _poll_until_settled(self, signature: str, deadline: float) -> Any:
        """Poll signature status until settled or ``deadline`` (loop time) passes."""
        loop = asyncio.get_running_loop()
        while True:
            statuses = await self._rpc.get_signature_statuses([signature])
            settled = _settled_status(statuses[0] if statuses else None)
            if settled is not None:
                return settled

            remaining = deadline - loop.time()
            if remaining <= 0:
                return UNCONFIRMED
            await asyncio.sleep(min(self._poll_interval, remaining))


def _settled_status(status: Optional[Dict[str, Any]]) -> Optional[Tuple[TransactionStatus, Optional[str]]]:
    if not status:
        return None
    if status.get("err") is not None:
        return TransactionStatus.FAILED, str(status["err"])
    if status.get("confirmationStatus") in _SETTLED_COMMITMENTS:
        return TransactionStatus.CONFIRMED, None
    return None


def _require_signatures(tx: VersionedTransaction) -> None:
    required = tx.message.header.num_required_signatures
    signatures = list(tx.signatures)
    if len(signatures) < required:
        raise SubmissionError(SubmitErrorKind.MALFORMED, "Transaction is missing signatures")

    empty = Signature.default()
    for index, signature in enumerate(signatures[:required]):
        if signature == empty:
            signer = tx.message.account_keys[index]
            raise SubmissionError(SubmitErrorKind.MALFORMED, f"Missing signature for {signer}")
