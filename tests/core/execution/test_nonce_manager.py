"""
Tests for nonce allocation.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from batchsend.core.execution import NonceManager
from batchsend.core.execution import nonce_manager as nonce_manager_module


PAYER = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


class DummyChainClient:
    """Chain stub whose pending nonce is set by the test."""

    def __init__(self, pending: int = 0):
        self.pending = pending
        self.get_pending_nonce = AsyncMock(side_effect=lambda address: self.pending)


@pytest.mark.asyncio
async def test_first_allocation_uses_pending_nonce():
    manager = NonceManager(DummyChainClient(pending=0), chain_id=1, wait_seconds=0)

    assert await manager.allocate(PAYER) == 0


@pytest.mark.asyncio
async def test_lagging_pending_view_still_increments():
    manager = NonceManager(DummyChainClient(pending=5), chain_id=1, wait_seconds=0)

    nonces = [await manager.allocate(PAYER) for _ in range(3)]

    assert nonces == [5, 6, 7]


@pytest.mark.asyncio
async def test_pending_ahead_of_local_wins():
    chain = DummyChainClient(pending=3)
    manager = NonceManager(chain, chain_id=1, wait_seconds=0)

    assert await manager.allocate(PAYER) == 3
    chain.pending = 10
    assert await manager.allocate(PAYER) == 10

    ledger = manager.get_ledger(PAYER)
    assert ledger.highest_issued == 10
    assert ledger.last_network_nonce == 10


@pytest.mark.asyncio
async def test_concurrent_allocations_are_distinct():
    manager = NonceManager(DummyChainClient(pending=0), chain_id=1, wait_seconds=0)

    nonces = await asyncio.gather(*(manager.allocate(PAYER) for _ in range(10)))

    assert sorted(nonces) == list(range(10))


@pytest.mark.asyncio
async def test_release_keeps_highest_issued():
    manager = NonceManager(DummyChainClient(pending=0), chain_id=1, wait_seconds=0)

    first = await manager.allocate(PAYER)
    await manager.allocate(PAYER)
    await manager.release(PAYER, first)

    ledger = manager.get_ledger(PAYER)
    assert ledger.live_nonces == {1}
    assert ledger.highest_issued == 1
    assert await manager.allocate(PAYER) == 2


@pytest.mark.asyncio
async def test_release_unknown_address_is_noop():
    manager = NonceManager(DummyChainClient(), chain_id=1, wait_seconds=0)

    await manager.release(PAYER, 4)

    assert manager.get_ledger(PAYER) is None


@pytest.mark.asyncio
async def test_address_case_shares_ledger():
    manager = NonceManager(DummyChainClient(pending=0), chain_id=1, wait_seconds=0)

    await manager.allocate(PAYER)
    assert await manager.allocate(PAYER.lower()) == 1


@pytest.mark.asyncio
async def test_throttle_after_allocation(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(nonce_manager_module.asyncio, "sleep", sleep)
    manager = NonceManager(DummyChainClient(pending=0), chain_id=1, wait_seconds=0.5)

    await manager.allocate(PAYER)

    sleep.assert_awaited_once_with(0.5)
