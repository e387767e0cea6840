"""
Transfer execution models and types.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (0x-hex string or int)."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith("0x") else int(value)


class TransferKind(str, Enum):
    """Kinds of wallet transfers the assembler can build."""
    STANDARD = "standard"                # Native value transfer
    ALTERNATE_ASSET = "alternate_asset"  # Settlement token transfer


class RecordStatus(str, Enum):
    """Persisted lifecycle status of a transaction record."""
    GENERATED = "generated"      # Signed and stored, maybe broadcast
    CONFIRMED = "confirmed"      # Receipt observed


class EntryOutcome(str, Enum):
    """Final bucket of a transfer entry in a batch run."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    INVALID = "invalid"
    UNCONFIRMED = "unconfirmed"


class BroadcastOutcome(str, Enum):
    """Non-fatal results of a broadcast."""
    ACCEPTED = "accepted"
    ALREADY_KNOWN = "already_known"
    STALE_NONCE = "stale_nonce"


# Transfer ids are stored in a signed 64-bit column
MIN_ENTRY_ID = -(2**63)
MAX_ENTRY_ID = 2**63 - 1


@dataclass(frozen=True)
class TransferEntry:
    """One requested payment.

    Two entries are equal when id, account, recipient and amount agree;
    aggregate ids only correlate the transfer with external records.
    """
    id: int
    account_ref: str
    amount: int                                 # Smallest unit
    recipient: str
    aggregate_ids: Tuple[int, ...] = field(default=(), compare=False)

    @property
    def has_storable_id(self) -> bool:
        return MIN_ENTRY_ID <= self.id <= MAX_ENTRY_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_ref": self.account_ref,
            "amount": str(self.amount),
            "recipient": self.recipient,
            "aggregate_ids": list(self.aggregate_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferEntry":
        return cls(
            id=int(data["id"]),
            account_ref=str(data["account_ref"]),
            amount=int(data["amount"]),
            recipient=str(data["recipient"]),
            aggregate_ids=tuple(int(i) for i in data.get("aggregate_ids") or ()),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "TransferEntry":
        return cls.from_dict(json.loads(raw))

    def diff(self, other: "TransferEntry") -> List[str]:
        """Names of the compared fields that differ from ``other``."""
        fields = []
        if self.id != other.id:
            fields.append("id")
        if self.account_ref != other.account_ref:
            fields.append("account_ref")
        if self.recipient != other.recipient:
            fields.append("recipient")
        if self.amount != other.amount:
            fields.append("amount")
        return fields


@dataclass
class UnsignedTransaction:
    """A legacy-priced transaction ready to be signed."""
    chain_id: int
    nonce: int
    gas_price: int
    gas_limit: int
    to: str                                     # Recipient or token contract
    value: int = 0
    data: str = "0x"
    kind: TransferKind = TransferKind.STANDARD

    def to_signable(self) -> Dict[str, Any]:
        """Field layout expected by the signer."""
        return {
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "gasPrice": self.gas_price,
            "gas": self.gas_limit,
            "to": self.to,
            "value": self.value,
            "data": self.data,
        }


@dataclass
class SignedTransaction:
    """A signed transaction and the fields it commits to."""
    tx_hash: str
    raw: str                                    # 0x-hex encoded payload
    chain_id: int
    nonce: int
    gas_price: int
    gas_limit: int
    to: str
    value: int = 0
    data: str = "0x"
    kind: TransferKind = TransferKind.STANDARD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.tx_hash,
            "raw": self.raw,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "gasPrice": str(self.gas_price),
            "gas": self.gas_limit,
            "to": self.to,
            "value": str(self.value),
            "data": self.data,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedTransaction":
        return cls(
            tx_hash=data["hash"],
            raw=data["raw"],
            chain_id=int(data["chainId"]),
            nonce=int(data["nonce"]),
            gas_price=int(data["gasPrice"]),
            gas_limit=int(data["gas"]),
            to=data["to"],
            value=int(data.get("value", 0)),
            data=data.get("data", "0x"),
            kind=TransferKind(data.get("kind", TransferKind.STANDARD.value)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "SignedTransaction":
        return cls.from_dict(json.loads(raw))


@dataclass
class Receipt:
    """Chain proof that a transaction was included."""
    tx_hash: str
    status: int                                 # 1 success, 0 reverted
    block_number: int
    block_hash: Optional[str] = None
    gas_used: int = 0
    cumulative_gas_used: int = 0
    effective_gas_price: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "Receipt":
        effective = data.get("effectiveGasPrice")
        return cls(
            tx_hash=data["transactionHash"],
            status=_parse_quantity(data.get("status", "0x1")),
            block_number=_parse_quantity(data.get("blockNumber")),
            block_hash=data.get("blockHash"),
            gas_used=_parse_quantity(data.get("gasUsed")),
            cumulative_gas_used=_parse_quantity(data.get("cumulativeGasUsed")),
            effective_gas_price=_parse_quantity(effective) if effective is not None else None,
        )


@dataclass
class TransactionRecord:
    """Persisted state of one submission attempt."""
    id: int                                     # = TransferEntry.id
    account_ref: str
    payer: str
    recipient: str
    tx_hash: str
    nonce: int
    value: int
    gas_limit: int
    gas_price: int
    serialized_tx: str
    serialized_entry: str
    status: RecordStatus = RecordStatus.GENERATED
    aggregate_ids: Tuple[int, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None

    # Confirmation details
    gas_cost: Optional[int] = None              # gas_used * gas_price
    gas_used: Optional[int] = None
    cumulative_gas_used: Optional[int] = None
    receipt_status: Optional[int] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None

    @classmethod
    def for_submission(
        cls,
        entry: TransferEntry,
        payer: str,
        signed_tx: SignedTransaction,
    ) -> "TransactionRecord":
        return cls(
            id=entry.id,
            account_ref=entry.account_ref,
            payer=payer,
            recipient=entry.recipient,
            tx_hash=signed_tx.tx_hash,
            nonce=signed_tx.nonce,
            value=entry.amount,
            gas_limit=signed_tx.gas_limit,
            gas_price=signed_tx.gas_price,
            aggregate_ids=entry.aggregate_ids,
            serialized_tx=signed_tx.to_json(),
            serialized_entry=entry.to_json(),
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status == RecordStatus.CONFIRMED


@dataclass
class PendingSubmission:
    """In-memory tracking of a broadcast transaction awaiting its receipt."""
    signed_tx: SignedTransaction
    entry: TransferEntry
    registered_at: datetime = field(default_factory=utcnow)

    @property
    def tx_hash(self) -> str:
        return self.signed_tx.tx_hash


@dataclass
class NonceLedger:
    """Tracks issued nonces for an address on a chain."""
    address: str
    chain_id: int
    highest_issued: Optional[int] = None        # Never decreases
    live_nonces: Set[int] = field(default_factory=set)
    last_network_nonce: Optional[int] = None
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class BroadcastResult:
    """Result of a non-fatal broadcast."""
    tx_hash: str
    outcome: BroadcastOutcome
    receipt: Optional[Receipt] = None           # Set when a stale nonce resolved
    message: Optional[str] = None

    @property
    def resolved(self) -> bool:
        """True when no monitoring is needed."""
        return self.receipt is not None


@dataclass
class MonitorReport:
    """Result of a receipt monitor run."""
    confirmed: List[str] = field(default_factory=list)
    reverted: List[str] = field(default_factory=list)
    abandoned: List[PendingSubmission] = field(default_factory=list)
    stopped: bool = False                       # Cancelled by the caller

    @property
    def unconfirmed_count(self) -> int:
        return len(self.abandoned)


@dataclass
class EntryResult:
    """Outcome of one entry in a batch."""
    entry: TransferEntry
    outcome: EntryOutcome
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchReport:
    """Aggregate result of a batch run."""
    results: List[EntryResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    recovered: int = 0                          # Stored submissions re-monitored

    def count(self, outcome: EntryOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def invalid(self) -> int:
        return self.count(EntryOutcome.INVALID)

    @property
    def failed(self) -> int:
        return self.count(EntryOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(EntryOutcome.SKIPPED)

    @property
    def unconfirmed(self) -> int:
        return self.count(EntryOutcome.UNCONFIRMED)

    @property
    def succeeded(self) -> int:
        return self.total - self.invalid - self.failed - self.skipped - self.unconfirmed

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "invalid": self.invalid,
            "unconfirmed": self.unconfirmed,
            "recovered": self.recovered,
            "duration_seconds": round(self.duration_seconds, 3),
        }
