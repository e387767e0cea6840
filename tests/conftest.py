"""
Shared fixtures: an in-memory chain node, a sqlite record store and a
deterministic payer account.
"""

from typing import Dict, List, Optional, Set

import pytest
from eth_account import Account
from eth_utils import keccak

from batchsend.core.execution import (
    Broadcaster,
    LocalSigner,
    NonceManager,
    ReceiptMonitor,
    TransactionAssembler,
    BatchOrchestrator,
)
from batchsend.core.execution.models import Receipt
from batchsend.core.recovery import RpcError
from batchsend.db.store import IdempotencyStore, TransactionStore
from batchsend.providers.base import ChainClient


PAYER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

RECIPIENT_A = "0x1111111111111111111111111111111111111111"
RECIPIENT_B = "0x2222222222222222222222222222222222222222"
RECIPIENT_C = "0x3333333333333333333333333333333333333333"


class FakeChainClient(ChainClient):
    """
    Minimal node: a mempool, mined receipts and scripted failures.

    Re-sending a pooled payload answers "already known", re-sending a mined
    one answers "nonce too low". With ``auto_mine`` a pooled transaction is
    mined the first time its receipt is requested.
    """

    name = "fake"

    def __init__(self, chain_id: int = 1, gas_price: int = 10, balance: int = 10**21):
        self.chain_id = chain_id
        self.gas_price = gas_price
        self.balance = balance
        self.auto_mine = False
        self.receipt_status = 1

        self.sent: List[str] = []
        self.pool: Set[str] = set()
        self.receipts: Dict[str, Receipt] = {}
        self.send_errors: List[Exception] = []
        self.receipt_error: Optional[Exception] = None

    @staticmethod
    def hash_of(raw: str) -> str:
        return "0x" + keccak(hexstr=raw).hex()

    def mine(self, tx_hash: str) -> Receipt:
        self.pool.discard(tx_hash)
        receipt = Receipt(
            tx_hash=tx_hash,
            status=self.receipt_status,
            block_number=100 + len(self.receipts),
            block_hash="0x" + "ab" * 32,
            gas_used=21000,
            cumulative_gas_used=21000 * (len(self.receipts) + 1),
        )
        self.receipts[tx_hash] = receipt
        return receipt

    def mine_all(self) -> None:
        for tx_hash in list(self.pool):
            self.mine(tx_hash)

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_pending_nonce(self, address: str) -> int:
        return len(self.pool) + len(self.receipts)

    async def suggest_gas_price(self) -> int:
        return self.gas_price

    async def get_balance(self, address: str) -> int:
        return self.balance

    async def send_raw_transaction(self, raw: str) -> str:
        self.sent.append(raw)
        if self.send_errors:
            raise self.send_errors.pop(0)

        tx_hash = self.hash_of(raw)
        if tx_hash in self.receipts:
            raise RpcError("nonce too low", code=-32000, method="eth_sendRawTransaction")
        if tx_hash in self.pool:
            raise RpcError("already known", code=-32000, method="eth_sendRawTransaction")
        self.pool.add(tx_hash)
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        if self.receipt_error is not None:
            raise self.receipt_error
        if tx_hash in self.receipts:
            return self.receipts[tx_hash]
        if self.auto_mine and tx_hash in self.pool:
            return self.mine(tx_hash)
        return None


@pytest.fixture
def account():
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def store():
    return IdempotencyStore(TransactionStore.from_url("sqlite://"))


@pytest.fixture
def make_orchestrator(chain, store, account):
    """Factory for orchestrators sharing the chain and store fixtures."""

    def _make(**overrides) -> BatchOrchestrator:
        nonce_manager = NonceManager(chain, chain_id=chain.chain_id, wait_seconds=0)
        assembler = TransactionAssembler(
            chain_client=chain,
            nonce_manager=nonce_manager,
            signer=LocalSigner(account),
            chain_id=chain.chain_id,
            gas_limit=21000,
        )
        monitor = ReceiptMonitor(
            chain_client=chain,
            store=store,
            nonce_manager=nonce_manager,
            payer=assembler.payer,
            poll_interval=0.01,
        )
        options = dict(
            chain_client=chain,
            store=store,
            assembler=assembler,
            broadcaster=Broadcaster(chain),
            monitor=monitor,
            release_nonce_on_fatal=True,
            monitor_timeout=5,
            balance_safety_factor=10,
        )
        options.update(overrides)
        return BatchOrchestrator(**options)

    return _make
