"""
Broadcasts signed transactions and classifies failures.

A rejected broadcast is not necessarily a failed transfer: the node may
already hold the transaction (a crashed earlier run sent it), or the nonce
may already be consumed by our own mined transaction. Both are reconciled
here instead of being reported as errors.
"""

import logging
from typing import Optional

from ...providers.base import ChainClient
from ..recovery.errors import (
    BroadcastErrorKind,
    FatalBroadcastError,
    classify_broadcast_error,
)
from .models import BroadcastOutcome, BroadcastResult, Receipt, SignedTransaction


logger = logging.getLogger(__name__)


class Broadcaster:
    """Submits signed transactions and classifies the node's answer."""

    def __init__(self, chain_client: ChainClient):
        self.chain_client = chain_client

    async def broadcast(self, signed_tx: SignedTransaction) -> BroadcastResult:
        """
        Submit a signed transaction.

        Returns:
            BroadcastResult with outcome ACCEPTED, ALREADY_KNOWN or STALE_NONCE.
            A STALE_NONCE result carries the receipt when the chain already
            has one for this hash.

        Raises:
            FatalBroadcastError: for any other rejection
        """
        tx_hash = signed_tx.tx_hash

        try:
            await self.chain_client.send_raw_transaction(signed_tx.raw)
        except Exception as e:
            kind = classify_broadcast_error(e)

            if kind == BroadcastErrorKind.ALREADY_KNOWN:
                logger.info(f"transaction: {tx_hash} already known, skipping")
                return BroadcastResult(
                    tx_hash=tx_hash,
                    outcome=BroadcastOutcome.ALREADY_KNOWN,
                    message=str(e),
                )

            if kind == BroadcastErrorKind.STALE_NONCE:
                receipt = await self._lookup_receipt(tx_hash)
                logger.info(
                    f"transaction: {tx_hash} nonce too low, "
                    f"receipt {'found' if receipt else 'not found'}"
                )
                return BroadcastResult(
                    tx_hash=tx_hash,
                    outcome=BroadcastOutcome.STALE_NONCE,
                    receipt=receipt,
                    message=str(e),
                )

            raise FatalBroadcastError(
                f"failed to broadcast transaction: {e}",
                tx_hash=tx_hash,
                nonce=signed_tx.nonce,
            ) from e

        logger.info(f"transaction: {tx_hash} has been broadcasted")
        return BroadcastResult(tx_hash=tx_hash, outcome=BroadcastOutcome.ACCEPTED)

    async def _lookup_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt for a stale-nonce transaction; lookup errors mean 'not yet'."""
        try:
            return await self.chain_client.get_transaction_receipt(tx_hash)
        except Exception as e:
            logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
            return None
