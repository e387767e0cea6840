"""
Receipt monitoring for all in-flight transactions of a batch.

One shared polling loop watches every pending submission instead of one task
per transaction. Submissions move Broadcast -> Confirmed when a receipt shows
up, or Broadcast -> Abandoned when the overall deadline passes or the caller
signals a stop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from ...config import settings
from ...providers.base import ChainClient
from ..recovery.errors import StorageError
from .models import (
    MonitorReport,
    PendingSubmission,
    Receipt,
    SignedTransaction,
    TransferEntry,
    utcnow,
)
from .nonce_manager import NonceManager

if TYPE_CHECKING:
    from ...db.store import IdempotencyStore


logger = logging.getLogger(__name__)


class ReceiptMonitor:
    """
    Tracks pending submissions and confirms them as receipts arrive.

    The pending map is only touched under ``_lock``. A tick copies the map
    under the lock, queries receipts without holding it, and takes the lock
    again to drop confirmed entries, so ``register`` never waits on RPC calls.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        store: IdempotencyStore,
        nonce_manager: NonceManager,
        payer: str,
        poll_interval: Optional[float] = None,
    ):
        self.chain_client = chain_client
        self.store = store
        self.nonce_manager = nonce_manager
        self.payer = payer
        self.poll_interval = settings.receipt_poll_seconds if poll_interval is None else poll_interval

        self._pending: Dict[str, PendingSubmission] = {}
        self._lock = asyncio.Lock()
        self._held_open = False
        self._wakeup = asyncio.Event()

        self.confirmed: Set[str] = set()
        self.reverted: Set[str] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, tx_hash: str) -> bool:
        return tx_hash in self._pending

    async def register(self, signed_tx: SignedTransaction, entry: TransferEntry) -> PendingSubmission:
        submission = PendingSubmission(signed_tx=signed_tx, entry=entry)
        async with self._lock:
            self._pending[signed_tx.tx_hash] = submission
        return submission

    async def discard(self, tx_hash: str) -> Optional[PendingSubmission]:
        """Stop tracking a submission (non-retryable broadcast failure)."""
        async with self._lock:
            return self._pending.pop(tx_hash, None)

    async def snapshot(self) -> List[PendingSubmission]:
        async with self._lock:
            return list(self._pending.values())

    def hold_open(self) -> None:
        """Keep ``run`` alive on an empty set until ``seal`` is called."""
        self._held_open = True

    def seal(self) -> None:
        """No more submissions will be registered; start the deadline."""
        self._held_open = False
        self._wakeup.set()

    async def confirm(self, submission: PendingSubmission, receipt: Receipt) -> None:
        """
        Record a receipt for a submission.

        Computes the gas cost, marks the record confirmed, releases the nonce
        and removes the submission from the pending set.
        """
        signed_tx = submission.signed_tx
        gas_cost = receipt.gas_used * signed_tx.gas_price

        self.store.mark_confirmed(signed_tx.tx_hash, gas_cost, receipt)
        await self.nonce_manager.release(self.payer, signed_tx.nonce)

        async with self._lock:
            self._pending.pop(signed_tx.tx_hash, None)

        if receipt.succeeded:
            self.confirmed.add(signed_tx.tx_hash)
            logger.info(
                f"Transaction confirmed: {signed_tx.tx_hash} "
                f"(entry {submission.entry.id}, block {receipt.block_number}, gas cost {gas_cost})"
            )
        else:
            self.reverted.add(signed_tx.tx_hash)
            logger.warning(
                f"Transaction reverted: {signed_tx.tx_hash} "
                f"(entry {submission.entry.id}, block {receipt.block_number})"
            )

    async def check_pending(self) -> int:
        """
        Run one tick over every pending submission.

        Returns the number of submissions confirmed in this tick. Missing
        receipts and lookup errors leave the submission pending.
        """
        confirmed = 0

        for submission in await self.snapshot():
            try:
                receipt = await self.chain_client.get_transaction_receipt(submission.tx_hash)
            except Exception as e:
                logger.warning(f"Error checking transaction status {submission.tx_hash}: {e}")
                continue

            if receipt is None:
                continue

            try:
                await self.confirm(submission, receipt)
            except StorageError as e:
                logger.error(f"Error updating transaction status {submission.tx_hash}: {e}")
                continue
            confirmed += 1

        return confirmed

    async def _sleep(self, seconds: float, stop_event: Optional[asyncio.Event]) -> None:
        """Sleep until the next tick, a seal, or a stop signal."""
        waiters = [asyncio.ensure_future(self._wakeup.wait())]
        if stop_event is not None:
            waiters.append(asyncio.ensure_future(stop_event.wait()))
        try:
            await asyncio.wait(waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            self._wakeup.clear()

    async def run(
        self,
        timeout: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> MonitorReport:
        """
        Poll until every submission is confirmed, the deadline passes or
        ``stop_event`` is set.

        Args:
            timeout: Seconds to wait once the monitor is sealed
                (default: settings.monitor_timeout_seconds). Zero or less
                abandons whatever is pending without polling.
            stop_event: Caller cancellation signal

        Returns:
            MonitorReport; submissions still pending are listed as abandoned
        """
        timeout = settings.monitor_timeout_seconds if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline: Optional[float] = None
        stopped = False

        while True:
            if deadline is None and not self._held_open:
                deadline = loop.time() + timeout

            if not self._held_open and not self._pending:
                break
            if stop_event is not None and stop_event.is_set():
                stopped = True
                break
            if deadline is not None and loop.time() >= deadline:
                break

            await self.check_pending()

            if not self._held_open and not self._pending:
                break

            if self._pending:
                pending_details = ", ".join(
                    f"[{s.entry.id}, {s.tx_hash}]" for s in await self.snapshot()
                )
                logger.info(
                    f"{self.pending_count} transactions in the pending queue: {pending_details}, "
                    f"waiting {self.poll_interval} seconds..."
                )

            wait = self.poll_interval
            if deadline is not None:
                wait = min(wait, max(deadline - loop.time(), 0.0))
            await self._sleep(wait, stop_event)

        abandoned = await self.snapshot()
        for submission in abandoned:
            waited = (utcnow() - submission.registered_at).total_seconds()
            logger.warning(
                f"Unprocessed transaction - Entry ID: {submission.entry.id}, "
                f"Tx Hash: {submission.tx_hash}, "
                f"registered at {submission.registered_at.isoformat()} ({waited:.0f}s ago)"
            )
        if abandoned:
            reason = "stop requested" if stopped else f"deadline of {timeout}s exceeded"
            logger.warning(f"Transaction monitoring stopped: {reason}")

        return MonitorReport(
            confirmed=sorted(self.confirmed),
            reverted=sorted(self.reverted),
            abandoned=abandoned,
            stopped=stopped,
        )
