from abc import ABC, abstractmethod
from typing import Optional

from ..core.execution.models import Receipt


class ChainClient(ABC):
    """Chain node interface consumed by the transfer engine"""

    name: str
    timeout_s: float = 30

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Chain id reported by the node"""
        pass

    @abstractmethod
    async def get_pending_nonce(self, address: str) -> int:
        """Next nonce for address, counting transactions still in the pool"""
        pass

    @abstractmethod
    async def suggest_gas_price(self) -> int:
        """Current gas price suggestion in the smallest unit"""
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance of address"""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw: str) -> str:
        """Submit a signed payload; returns the transaction hash"""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt for tx_hash, or None while it is not mined"""
        pass

    async def close(self) -> None:
        """Release transport resources"""
        pass
