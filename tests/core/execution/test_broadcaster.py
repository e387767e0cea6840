"""
Tests for broadcast classification.
"""

import pytest
from unittest.mock import AsyncMock

from batchsend.core.execution import (
    Broadcaster,
    BroadcastOutcome,
    Receipt,
    SignedTransaction,
)
from batchsend.core.recovery import FatalBroadcastError, RpcError, TransientNetworkError


TX_HASH = "0x" + "aa" * 32


def make_signed_tx() -> SignedTransaction:
    return SignedTransaction(
        tx_hash=TX_HASH,
        raw="0xf86c",
        chain_id=1,
        nonce=9,
        gas_price=10,
        gas_limit=21000,
        to="0x1111111111111111111111111111111111111111",
        value=1,
    )


class DummyChainClient:
    def __init__(self, send_error=None, receipt=None):
        self.send_raw_transaction = AsyncMock(return_value=TX_HASH, side_effect=send_error)
        self.get_transaction_receipt = AsyncMock(return_value=receipt)


@pytest.mark.asyncio
async def test_accepted_broadcast():
    chain = DummyChainClient()

    result = await Broadcaster(chain).broadcast(make_signed_tx())

    assert result.outcome == BroadcastOutcome.ACCEPTED
    assert result.resolved is False
    chain.send_raw_transaction.assert_awaited_once_with("0xf86c")


@pytest.mark.asyncio
async def test_already_known_is_not_an_error():
    chain = DummyChainClient(send_error=RpcError("Already Known"))

    result = await Broadcaster(chain).broadcast(make_signed_tx())

    assert result.outcome == BroadcastOutcome.ALREADY_KNOWN
    chain.get_transaction_receipt.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_nonce_returns_receipt():
    receipt = Receipt(tx_hash=TX_HASH, status=1, block_number=12, gas_used=21000)
    chain = DummyChainClient(send_error=RpcError("nonce too low: next nonce 10, tx nonce 9"), receipt=receipt)

    result = await Broadcaster(chain).broadcast(make_signed_tx())

    assert result.outcome == BroadcastOutcome.STALE_NONCE
    assert result.receipt is receipt
    assert result.resolved is True


@pytest.mark.asyncio
async def test_stale_nonce_receipt_lookup_failure():
    chain = DummyChainClient(send_error=RpcError("nonce too low"))
    chain.get_transaction_receipt.side_effect = TransientNetworkError("connection reset")

    result = await Broadcaster(chain).broadcast(make_signed_tx())

    assert result.outcome == BroadcastOutcome.STALE_NONCE
    assert result.receipt is None


@pytest.mark.asyncio
async def test_other_rejections_are_fatal():
    cause = RpcError("insufficient funds for gas * price + value")
    chain = DummyChainClient(send_error=cause)

    with pytest.raises(FatalBroadcastError) as exc_info:
        await Broadcaster(chain).broadcast(make_signed_tx())

    assert exc_info.value.tx_hash == TX_HASH
    assert exc_info.value.nonce == 9
    assert exc_info.value.__cause__ is cause
