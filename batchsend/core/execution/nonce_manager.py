"""
Nonce management for concurrent transactions.

Hands out nonces per payer address, reconciling the node's pending nonce with
nonces issued locally but not yet confirmed, so that two concurrent callers
never receive the same value even when the node's view lags behind.
"""

import asyncio
import logging
from typing import Dict, Optional

from ...config import settings
from ...providers.base import ChainClient
from .models import NonceLedger, utcnow


logger = logging.getLogger(__name__)


class NonceManager:
    """
    Allocates nonces for one chain.

    Features:
    - One lock per address; allocations for an address never interleave
    - Monotonic highest-issued counter per address
    - Live set of issued but unconfirmed nonces
    - Throttle after each allocation so the node's pending view can catch up
    """

    def __init__(
        self,
        chain_client: ChainClient,
        chain_id: int,
        wait_seconds: Optional[float] = None,
    ):
        self._client = chain_client
        self._chain_id = chain_id
        self._wait_seconds = settings.nonce_wait_seconds if wait_seconds is None else wait_seconds
        self._ledgers: Dict[str, NonceLedger] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_key(self, address: str) -> str:
        return address.lower()

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _get_ledger(self, key: str) -> NonceLedger:
        if key not in self._ledgers:
            self._ledgers[key] = NonceLedger(address=key, chain_id=self._chain_id)
        return self._ledgers[key]

    async def allocate(self, address: str) -> int:
        """
        Reserve the next nonce for an address.

        The result is the larger of the node's pending nonce and one past the
        highest nonce issued by this process. The throttle wait happens while
        the lock is still held.
        """
        key = self._get_key(address)
        lock = self._get_lock(key)

        async with lock:
            pending_nonce = await self._client.get_pending_nonce(address)
            ledger = self._get_ledger(key)

            nonce = pending_nonce
            if ledger.highest_issued is not None and ledger.highest_issued >= pending_nonce:
                nonce = ledger.highest_issued + 1

            ledger.highest_issued = nonce
            ledger.live_nonces.add(nonce)
            ledger.last_network_nonce = pending_nonce
            ledger.last_updated = utcnow()

            if self._wait_seconds > 0:
                await asyncio.sleep(self._wait_seconds)

            logger.debug(
                f"Using nonce: {nonce} (pending: {pending_nonce}, "
                f"live: {len(ledger.live_nonces)})"
            )
            return nonce

    async def release(self, address: str, nonce: int) -> None:
        """
        Drop a nonce from the live set.

        Called once its transaction is confirmed, or after a fatal broadcast
        when that policy is enabled. The highest-issued counter is untouched.
        """
        key = self._get_key(address)
        lock = self._get_lock(key)

        async with lock:
            ledger = self._ledgers.get(key)
            if ledger is not None:
                ledger.live_nonces.discard(nonce)
                ledger.last_updated = utcnow()

    def get_ledger(self, address: str) -> Optional[NonceLedger]:
        """Get the current nonce ledger for an address."""
        return self._ledgers.get(self._get_key(address))
