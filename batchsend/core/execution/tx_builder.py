"""
Transaction builder and signer for transfer entries.
"""

import logging
from typing import Optional

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from ...config import Settings, settings as default_settings
from ...providers.base import ChainClient
from .models import SignedTransaction, TransferEntry, TransferKind, UnsignedTransaction
from .nonce_manager import NonceManager


logger = logging.getLogger(__name__)


ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)

MAX_UINT256 = 2**256 - 1


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"Value out of uint256 range: {value}")
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    return addr.zfill(64)


def _to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


class TransactionBuilder:
    """
    Builds unsigned transactions for each transfer kind.

    Handles:
    - Native value transfers
    - Settlement token (ERC20) transfers
    """

    @staticmethod
    def build_native_transfer(
        chain_id: int,
        nonce: int,
        gas_price: int,
        gas_limit: int,
        recipient: str,
        amount: int,
    ) -> UnsignedTransaction:
        """Build a plain value transfer."""
        return UnsignedTransaction(
            chain_id=chain_id,
            nonce=nonce,
            gas_price=gas_price,
            gas_limit=gas_limit,
            to=to_checksum_address(recipient),
            value=amount,
            data="0x",
            kind=TransferKind.STANDARD,
        )

    @staticmethod
    def build_erc20_transfer(
        chain_id: int,
        nonce: int,
        gas_price: int,
        gas_limit: int,
        token_address: str,
        recipient: str,
        amount: int,
    ) -> UnsignedTransaction:
        """Build a token transfer call addressed to the token contract."""
        data = (
            ERC20_TRANSFER_SELECTOR
            + _encode_address(recipient)
            + _encode_uint256(amount)
        )
        return UnsignedTransaction(
            chain_id=chain_id,
            nonce=nonce,
            gas_price=gas_price,
            gas_limit=gas_limit,
            to=to_checksum_address(token_address),
            value=0,
            data=data,
            kind=TransferKind.ALTERNATE_ASSET,
        )

    @staticmethod
    def build(
        kind: TransferKind,
        chain_id: int,
        nonce: int,
        gas_price: int,
        gas_limit: int,
        recipient: str,
        amount: int,
        token_address: Optional[str] = None,
    ) -> UnsignedTransaction:
        if kind == TransferKind.ALTERNATE_ASSET:
            if not token_address:
                raise ValueError("token_address is required for alternate_asset transfers")
            return TransactionBuilder.build_erc20_transfer(
                chain_id=chain_id,
                nonce=nonce,
                gas_price=gas_price,
                gas_limit=gas_limit,
                token_address=token_address,
                recipient=recipient,
                amount=amount,
            )
        return TransactionBuilder.build_native_transfer(
            chain_id=chain_id,
            nonce=nonce,
            gas_price=gas_price,
            gas_limit=gas_limit,
            recipient=recipient,
            amount=amount,
        )


class LocalSigner:
    """Signs transactions with a locally held account key."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, tx: UnsignedTransaction) -> SignedTransaction:
        signed = self._account.sign_transaction(tx.to_signable())
        return SignedTransaction(
            tx_hash=_to_hex(signed.hash),
            raw=_to_hex(signed.raw_transaction),
            chain_id=tx.chain_id,
            nonce=tx.nonce,
            gas_price=tx.gas_price,
            gas_limit=tx.gas_limit,
            to=tx.to,
            value=tx.value,
            data=tx.data,
            kind=tx.kind,
        )


class TransactionAssembler:
    """
    Turns a transfer entry into a signed transaction.

    Allocates the nonce, asks the node for a gas price, builds the
    transaction for the configured kind and signs it.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        nonce_manager: NonceManager,
        signer: LocalSigner,
        chain_id: int,
        kind: TransferKind = TransferKind.STANDARD,
        gas_limit: Optional[int] = None,
        token_address: Optional[str] = None,
    ):
        self.chain_client = chain_client
        self.nonce_manager = nonce_manager
        self.signer = signer
        self.chain_id = chain_id
        self.kind = kind
        self.gas_limit = gas_limit or 21000
        self.token_address = token_address

    @classmethod
    def from_settings(
        cls,
        chain_client: ChainClient,
        nonce_manager: NonceManager,
        signer: LocalSigner,
        config: Optional[Settings] = None,
    ) -> "TransactionAssembler":
        config = config or default_settings
        return cls(
            chain_client=chain_client,
            nonce_manager=nonce_manager,
            signer=signer,
            chain_id=config.chain_id,
            kind=TransferKind(config.transfer_kind),
            gas_limit=config.effective_gas_limit,
            token_address=config.token_address or None,
        )

    @property
    def payer(self) -> str:
        return self.signer.address

    async def assemble(self, entry: TransferEntry) -> SignedTransaction:
        nonce = await self.nonce_manager.allocate(self.payer)

        try:
            gas_price = await self.chain_client.suggest_gas_price()
            tx = TransactionBuilder.build(
                kind=self.kind,
                chain_id=self.chain_id,
                nonce=nonce,
                gas_price=gas_price,
                gas_limit=self.gas_limit,
                recipient=entry.recipient,
                amount=entry.amount,
                token_address=self.token_address,
            )
            signed = self.signer.sign(tx)
        except Exception:
            # Nothing was signed with this nonce
            await self.nonce_manager.release(self.payer, nonce)
            raise

        logger.debug(
            f"Entry {entry.id}: signed {signed.tx_hash} "
            f"(nonce={nonce}, gas_price={gas_price}, gas={tx.gas_limit})"
        )
        return signed
