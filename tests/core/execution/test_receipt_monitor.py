"""
Tests for the shared receipt monitor.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from batchsend.core.execution import (
    NonceManager,
    Receipt,
    ReceiptMonitor,
    RecordStatus,
    SignedTransaction,
    TransactionRecord,
    TransferEntry,
)
from batchsend.core.recovery import TransientNetworkError


PAYER = "0x00000000000000000000000000000000000000aa"


class DummyChainClient:
    """Receipts keyed by hash; lookups for unknown hashes return None."""

    def __init__(self):
        self.receipts = {}
        self.get_pending_nonce = AsyncMock(return_value=0)
        self.get_transaction_receipt = AsyncMock(side_effect=lambda tx_hash: self.receipts.get(tx_hash))


def make_submission(entry_id: int, nonce: int, gas_price: int = 7):
    entry = TransferEntry(
        id=entry_id,
        account_ref=f"acct-{entry_id}",
        amount=100,
        recipient="0x1111111111111111111111111111111111111111",
    )
    signed_tx = SignedTransaction(
        tx_hash="0x" + format(entry_id, "064x"),
        raw="0xf86c",
        chain_id=1,
        nonce=nonce,
        gas_price=gas_price,
        gas_limit=21000,
        to=entry.recipient,
        value=entry.amount,
    )
    return entry, signed_tx


async def setup_monitor(store, count: int, poll_interval: float = 0.01):
    chain = DummyChainClient()
    nonce_manager = NonceManager(chain, chain_id=1, wait_seconds=0)
    monitor = ReceiptMonitor(chain, store, nonce_manager, payer=PAYER, poll_interval=poll_interval)

    submissions = []
    for i in range(1, count + 1):
        nonce = await nonce_manager.allocate(PAYER)
        entry, signed_tx = make_submission(i, nonce)
        store.create(TransactionRecord.for_submission(entry, PAYER, signed_tx))
        await monitor.register(signed_tx, entry)
        submissions.append(signed_tx)

    return chain, nonce_manager, monitor, submissions


@pytest.mark.asyncio
async def test_zero_deadline_abandons_without_polling(store):
    chain, _, monitor, submissions = await setup_monitor(store, 3)

    report = await monitor.run(timeout=0)

    assert report.unconfirmed_count == 3
    assert report.confirmed == []
    assert report.stopped is False
    chain.get_transaction_receipt.assert_not_awaited()


@pytest.mark.asyncio
async def test_receipts_confirm_records_and_release_nonces(store):
    chain, nonce_manager, monitor, submissions = await setup_monitor(store, 2)
    for signed_tx in submissions:
        chain.receipts[signed_tx.tx_hash] = Receipt(
            tx_hash=signed_tx.tx_hash, status=1, block_number=50, gas_used=21000,
        )

    report = await monitor.run(timeout=5)

    assert sorted(report.confirmed) == sorted(s.tx_hash for s in submissions)
    assert report.abandoned == []
    assert monitor.pending_count == 0

    record = store.lookup(1).record
    assert record.status == RecordStatus.CONFIRMED
    assert record.gas_cost == 21000 * 7
    assert record.confirmed_at is not None
    assert nonce_manager.get_ledger(PAYER).live_nonces == set()


@pytest.mark.asyncio
async def test_lookup_errors_leave_submission_pending(store):
    chain, _, monitor, submissions = await setup_monitor(store, 1)
    tx_hash = submissions[0].tx_hash
    receipt = Receipt(tx_hash=tx_hash, status=1, block_number=50, gas_used=21000)
    chain.get_transaction_receipt.side_effect = [TransientNetworkError("connection refused"), receipt]

    assert await monitor.check_pending() == 0
    assert monitor.is_pending(tx_hash)

    assert await monitor.check_pending() == 1
    assert not monitor.is_pending(tx_hash)


@pytest.mark.asyncio
async def test_reverted_receipt_is_tracked_separately(store):
    chain, _, monitor, submissions = await setup_monitor(store, 1)
    tx_hash = submissions[0].tx_hash
    chain.receipts[tx_hash] = Receipt(tx_hash=tx_hash, status=0, block_number=50, gas_used=30000)

    report = await monitor.run(timeout=5)

    assert report.reverted == [tx_hash]
    assert report.confirmed == []
    assert store.lookup(1).record.receipt_status == 0


@pytest.mark.asyncio
async def test_missing_record_keeps_submission_pending(store):
    chain, _, monitor, _ = await setup_monitor(store, 0)
    entry, signed_tx = make_submission(42, nonce=0)
    await monitor.register(signed_tx, entry)
    chain.receipts[signed_tx.tx_hash] = Receipt(
        tx_hash=signed_tx.tx_hash, status=1, block_number=50, gas_used=21000,
    )

    assert await monitor.check_pending() == 0
    assert monitor.is_pending(signed_tx.tx_hash)


@pytest.mark.asyncio
async def test_stop_event_ends_run(store):
    chain, _, monitor, _ = await setup_monitor(store, 2, poll_interval=10)
    stop_event = asyncio.Event()

    async def stop_soon():
        await asyncio.sleep(0.05)
        stop_event.set()

    asyncio.create_task(stop_soon())
    report = await asyncio.wait_for(monitor.run(timeout=60, stop_event=stop_event), timeout=5)

    assert report.stopped is True
    assert report.unconfirmed_count == 2


@pytest.mark.asyncio
async def test_held_open_monitor_waits_for_seal(store):
    chain, _, monitor, _ = await setup_monitor(store, 0)
    monitor.hold_open()
    task = asyncio.create_task(monitor.run(timeout=5))

    await asyncio.sleep(0.05)
    assert not task.done()

    entry, signed_tx = make_submission(1, nonce=0)
    store.create(TransactionRecord.for_submission(entry, PAYER, signed_tx))
    await monitor.register(signed_tx, entry)
    chain.receipts[signed_tx.tx_hash] = Receipt(
        tx_hash=signed_tx.tx_hash, status=1, block_number=50, gas_used=21000,
    )
    monitor.seal()

    report = await asyncio.wait_for(task, timeout=5)

    assert report.confirmed == [signed_tx.tx_hash]


@pytest.mark.asyncio
async def test_abandoned_submissions_logged_with_registration_time(store, caplog):
    _, _, monitor, submissions = await setup_monitor(store, 1)
    (submission,) = await monitor.snapshot()

    with caplog.at_level("WARNING", logger="batchsend.core.execution.receipt_monitor"):
        await monitor.run(timeout=0)

    assert f"Tx Hash: {submissions[0].tx_hash}" in caplog.text
    assert f"registered at {submission.registered_at.isoformat()}" in caplog.text
