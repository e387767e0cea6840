"""
Batch orchestrator for transfer entries.

Drives each entry through validation, idempotent record creation,
broadcast and receipt monitoring, and aggregates the outcomes:
- Entries are handled one at a time, in input order
- One shared receipt monitor confirms everything that was broadcast
- Per-entry errors are counted, never raised; storage failures abort the run
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Iterable, List, Optional

from ...config import Settings, settings as default_settings
from ...logging_config import batch_context, get_transfer_logger
from ...providers.base import ChainClient
from ...services.address import AddressValidator
from ..recovery.errors import (
    ChainIdMismatchError,
    DuplicateRecordError,
    DuplicateSubmissionError,
    EntryMismatchError,
    FatalBroadcastError,
    InsufficientBalanceError,
    InvalidEntryIdError,
    InvalidRecipientError,
    RecoverableError,
    StorageError,
    UnrecoverableError,
)
from .broadcaster import Broadcaster
from .models import (
    BatchReport,
    BroadcastOutcome,
    EntryOutcome,
    EntryResult,
    TransactionRecord,
    TransferEntry,
    TransferKind,
    utcnow,
)
from .receipt_monitor import ReceiptMonitor
from .tx_builder import TransactionAssembler

if TYPE_CHECKING:
    from ...db.store import IdempotencyStore


logger = logging.getLogger(__name__)
transfer_log = get_transfer_logger()


class BatchOrchestrator:
    """
    Runs a batch of transfer entries to completion.

    Responsibilities:
    - Validate recipients
    - Skip entries already confirmed, reuse stored signed transactions
    - Assemble, persist and broadcast new transactions
    - Hand broadcast transactions to the receipt monitor
    - Produce the batch report
    """

    def __init__(
        self,
        chain_client: ChainClient,
        store: IdempotencyStore,
        assembler: TransactionAssembler,
        validator: Optional[AddressValidator] = None,
        broadcaster: Optional[Broadcaster] = None,
        monitor: Optional[ReceiptMonitor] = None,
        release_nonce_on_fatal: Optional[bool] = None,
        monitor_timeout: Optional[float] = None,
        balance_safety_factor: Optional[int] = None,
    ):
        self.chain_client = chain_client
        self.store = store
        self.assembler = assembler
        self.nonce_manager = assembler.nonce_manager
        self.validator = validator or AddressValidator()
        self.broadcaster = broadcaster or Broadcaster(chain_client)
        self.monitor = monitor or ReceiptMonitor(
            chain_client=chain_client,
            store=store,
            nonce_manager=assembler.nonce_manager,
            payer=assembler.payer,
        )
        self.release_nonce_on_fatal = (
            default_settings.release_nonce_on_fatal
            if release_nonce_on_fatal is None
            else release_nonce_on_fatal
        )
        self.monitor_timeout = (
            default_settings.monitor_timeout_seconds if monitor_timeout is None else monitor_timeout
        )
        self.balance_safety_factor = (
            default_settings.balance_safety_factor
            if balance_safety_factor is None
            else balance_safety_factor
        )

    @property
    def payer(self) -> str:
        return self.assembler.payer

    # ------------------------------------------------------------------
    # Pre-flight checks
    # ------------------------------------------------------------------

    async def verify_chain_id(self) -> int:
        """Compare the node's chain id with the one transactions are signed for."""
        actual = await self.chain_client.get_chain_id()
        if actual != self.assembler.chain_id:
            raise ChainIdMismatchError(self.assembler.chain_id, actual)
        return actual

    async def check_balance(self, entries: List[TransferEntry]) -> int:
        """
        Make sure the payer can fund the whole batch.

        Gas is budgeted at the suggested price times the safety factor for
        every entry. Settlement-token transfers only need native balance for
        gas. Returns the required amount.
        """
        balance = await self.chain_client.get_balance(self.payer)
        gas_price = await self.chain_client.suggest_gas_price()

        total_amount = 0
        if self.assembler.kind == TransferKind.STANDARD:
            total_amount = sum(entry.amount for entry in entries)

        estimated_gas = gas_price * self.balance_safety_factor * self.assembler.gas_limit * len(entries)
        required = total_amount + estimated_gas

        if balance < required:
            raise InsufficientBalanceError(balance, required)

        logger.info(f"balance check passed, have {balance}, need at least {required}")
        return required

    # ------------------------------------------------------------------
    # Restart recovery
    # ------------------------------------------------------------------

    async def recover_pending(self) -> int:
        """
        Re-register this payer's Generated records with the monitor.

        The stored payload is re-broadcast as-is, so the transaction hash
        stays the same. Returns the number of submissions being monitored.
        """
        recovered = 0

        for stored in self.store.pending(payer=self.payer):
            submission = await self.monitor.register(stored.signed_tx, stored.entry)
            try:
                result = await self.broadcaster.broadcast(stored.signed_tx)
            except FatalBroadcastError as e:
                await self.monitor.discard(stored.signed_tx.tx_hash)
                logger.warning(f"Recovered entry {stored.entry.id} not re-broadcast: {e}")
                continue

            if result.receipt is not None:
                await self.monitor.confirm(submission, result.receipt)
                continue
            recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} pending transactions from the store")
        return recovered

    # ------------------------------------------------------------------
    # Per-entry processing
    # ------------------------------------------------------------------

    def _log(self, event: str, entry: TransferEntry, level: str = "info", **fields) -> None:
        getattr(transfer_log, level)(
            event,
            entry_id=entry.id,
            account_ref=entry.account_ref,
            recipient=entry.recipient,
            amount=str(entry.amount),
            **fields,
        )

    def _failed(self, entry: TransferEntry, error: Exception, tx_hash: Optional[str] = None) -> EntryResult:
        self._log("transfer_failed", entry, level="error", tx_hash=tx_hash, error=str(error))
        return EntryResult(entry=entry, outcome=EntryOutcome.FAILED, tx_hash=tx_hash, error=str(error))

    async def process_entry(self, entry: TransferEntry) -> EntryResult:
        """
        Validate, persist and broadcast one entry.

        Returns an EntryResult. Entries handed to the monitor come back as
        UNCONFIRMED until the monitor reports on them.

        Raises:
            StorageError: lookup or create failed on the record store
        """
        if not entry.has_storable_id:
            error = InvalidEntryIdError(entry.id)
            self._log("transfer_invalid", entry, level="warning", error=str(error))
            return EntryResult(entry=entry, outcome=EntryOutcome.INVALID, error=str(error))

        if not self.validator.is_valid_recipient(entry.recipient):
            error = InvalidRecipientError(entry.id, entry.recipient)
            self._log("transfer_invalid", entry, level="warning", error=str(error))
            return EntryResult(entry=entry, outcome=EntryOutcome.INVALID, error=str(error))

        stored = self.store.lookup(entry.id)

        if stored is not None and stored.is_confirmed:
            skipped = DuplicateSubmissionError(entry.id, stored.record.tx_hash)
            self._log("transfer_skipped", entry, tx_hash=stored.record.tx_hash, reason=str(skipped))
            return EntryResult(
                entry=entry,
                outcome=EntryOutcome.SKIPPED,
                tx_hash=stored.record.tx_hash,
                error=str(skipped),
            )

        if stored is not None:
            try:
                self.store.verify_matches(stored, entry)
            except EntryMismatchError as e:
                return self._failed(entry, e, tx_hash=stored.record.tx_hash)
            signed_tx = stored.signed_tx
            logger.info(f"Entry ID {entry.id}: Get transaction (found in database)")
        else:
            try:
                signed_tx = await self.assembler.assemble(entry)
            except (RecoverableError, UnrecoverableError, ValueError) as e:
                return self._failed(entry, e)

            record = TransactionRecord.for_submission(entry, self.payer, signed_tx)
            try:
                self.store.create(record)
            except DuplicateRecordError as e:
                await self.nonce_manager.release(self.payer, signed_tx.nonce)
                return self._failed(entry, e, tx_hash=signed_tx.tx_hash)
            except StorageError:
                await self.nonce_manager.release(self.payer, signed_tx.nonce)
                raise

        submission = await self.monitor.register(signed_tx, entry)

        try:
            result = await self.broadcaster.broadcast(signed_tx)
        except FatalBroadcastError as e:
            await self.monitor.discard(signed_tx.tx_hash)
            if self.release_nonce_on_fatal:
                await self.nonce_manager.release(self.payer, signed_tx.nonce)
            return self._failed(entry, e, tx_hash=signed_tx.tx_hash)

        if result.outcome == BroadcastOutcome.STALE_NONCE and result.receipt is not None:
            try:
                await self.monitor.confirm(submission, result.receipt)
            except StorageError as e:
                logger.error(f"Entry ID {entry.id}: failed to record receipt, leaving it to the monitor: {e}")
            else:
                if not result.receipt.succeeded:
                    return self._failed(entry, Exception("transaction reverted"), tx_hash=signed_tx.tx_hash)
                self._log("transfer_succeeded", entry, tx_hash=signed_tx.tx_hash, via="stale_nonce_receipt")
                return EntryResult(entry=entry, outcome=EntryOutcome.SUCCEEDED, tx_hash=signed_tx.tx_hash)

        self._log("transfer_queued", entry, tx_hash=signed_tx.tx_hash, broadcast=result.outcome.value)
        return EntryResult(entry=entry, outcome=EntryOutcome.UNCONFIRMED, tx_hash=signed_tx.tx_hash)

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    async def run(
        self,
        entries: Iterable[TransferEntry],
        timeout: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
        recover: bool = False,
        concurrent_monitoring: bool = False,
    ) -> BatchReport:
        """
        Process a batch of entries and wait for their confirmations.

        Args:
            entries: Transfer entries, processed in order
            timeout: Confirmation deadline in seconds (default: monitor_timeout)
            stop_event: Cancellation signal; pending transactions are then
                reported UNCONFIRMED
            recover: Re-monitor Generated records from earlier runs first
            concurrent_monitoring: Poll receipts while entries are still
                being submitted

        Returns:
            BatchReport with one result per entry

        Raises:
            StorageError: the record store failed on lookup or create
        """
        timeout = self.monitor_timeout if timeout is None else timeout
        report = BatchReport()

        with batch_context(self.payer):
            if recover:
                report.recovered = await self.recover_pending()

            monitor_task: Optional[asyncio.Task] = None
            if concurrent_monitoring:
                self.monitor.hold_open()
                monitor_task = asyncio.create_task(self.monitor.run(timeout, stop_event))

            queued: List[EntryResult] = []
            try:
                for entry in entries:
                    result = await self.process_entry(entry)
                    report.results.append(result)
                    if result.outcome == EntryOutcome.UNCONFIRMED:
                        queued.append(result)
            except BaseException:
                if monitor_task is not None:
                    self.monitor.seal()
                    monitor_task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await monitor_task
                raise

            if monitor_task is not None:
                self.monitor.seal()
                await monitor_task
            else:
                await self.monitor.run(timeout, stop_event)

            for result in queued:
                if result.tx_hash in self.monitor.reverted:
                    result.outcome = EntryOutcome.FAILED
                    result.error = "transaction reverted"
                    self._log("transfer_failed", result.entry, level="error",
                              tx_hash=result.tx_hash, error=result.error)
                elif result.tx_hash in self.monitor.confirmed:
                    result.outcome = EntryOutcome.SUCCEEDED
                    self._log("transfer_succeeded", result.entry, tx_hash=result.tx_hash)
                else:
                    self._log("transfer_unconfirmed", result.entry, level="warning", tx_hash=result.tx_hash)

            report.finished_at = utcnow()
            transfer_log.info("batch_summary", **report.summary())

        return report


def create_orchestrator(
    account,
    config: Optional[Settings] = None,
    chain_client: Optional[ChainClient] = None,
    store: Optional[IdempotencyStore] = None,
) -> BatchOrchestrator:
    """Wire an orchestrator from settings for a signing account."""
    from ...db.store import IdempotencyStore, TransactionStore
    from ...providers.rpc import JsonRpcChainClient
    from ..recovery.strategies import ExponentialBackoffStrategy
    from .nonce_manager import NonceManager
    from .tx_builder import LocalSigner

    config = config or default_settings
    chain_client = chain_client or JsonRpcChainClient(
        rpc_url=config.rpc_url,
        timeout_s=config.rpc_timeout_seconds,
        retry=ExponentialBackoffStrategy(max_attempts=config.rpc_max_attempts),
    )
    store = store or IdempotencyStore(TransactionStore.from_url(config.database_url))

    nonce_manager = NonceManager(
        chain_client,
        chain_id=config.chain_id,
        wait_seconds=config.nonce_wait_seconds,
    )
    assembler = TransactionAssembler.from_settings(
        chain_client=chain_client,
        nonce_manager=nonce_manager,
        signer=LocalSigner(account),
        config=config,
    )
    monitor = ReceiptMonitor(
        chain_client=chain_client,
        store=store,
        nonce_manager=nonce_manager,
        payer=assembler.payer,
        poll_interval=config.receipt_poll_seconds,
    )
    return BatchOrchestrator(
        chain_client=chain_client,
        store=store,
        assembler=assembler,
        monitor=monitor,
        release_nonce_on_fatal=config.release_nonce_on_fatal,
        monitor_timeout=config.monitor_timeout_seconds,
        balance_safety_factor=config.balance_safety_factor,
    )
