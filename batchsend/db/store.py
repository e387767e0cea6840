"""
Transaction record store and the idempotency adapter on top of it.

The store is built from an explicit SQLAlchemy engine; nothing here keeps a
process-wide database handle.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Generator, List, Optional

from sqlalchemy import create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.execution.models import (
    RecordStatus,
    Receipt,
    SignedTransaction,
    TransactionRecord,
    TransferEntry,
    utcnow,
)
from ..core.recovery.errors import (
    DuplicateRecordError,
    EntryMismatchError,
    RecordNotFoundError,
    StorageError,
)
from .models import Base, TransactionRow

logger = logging.getLogger(__name__)


def _int_or_none(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


def _str_or_none(value: Optional[int]) -> Optional[str]:
    return str(value) if value is not None else None


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for the record store and make sure the table exists."""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    kwargs = {"future": True}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=70, pool_recycle=300)

    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(bind=engine, checkfirst=True)
    return engine


class TransactionStore:
    """Row-level create/read/update of transaction records."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessionmaker = sessionmaker(
            autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False
        )

    @classmethod
    def from_url(cls, database_url: str) -> "TransactionStore":
        return cls(create_db_engine(database_url))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        db = self._sessionmaker()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _to_row(record: TransactionRecord) -> TransactionRow:
        return TransactionRow(
            id=record.id,
            account_ref=record.account_ref,
            payer=record.payer,
            nonce=record.nonce,
            recipient=record.recipient,
            tx_hash=record.tx_hash,
            value=str(record.value),
            gas_limit=str(record.gas_limit),
            gas_price=str(record.gas_price),
            status=record.status.value,
            gas_cost=_str_or_none(record.gas_cost),
            gas_used=_str_or_none(record.gas_used),
            cumulative_gas_used=_str_or_none(record.cumulative_gas_used),
            receipt_status=record.receipt_status,
            block_number=record.block_number,
            block_hash=record.block_hash,
            created_at=record.created_at,
            confirmed_at=record.confirmed_at,
            aggregate_ids=list(record.aggregate_ids),
            tx=record.serialized_tx,
            entry=record.serialized_entry,
        )

    @staticmethod
    def _to_record(row: TransactionRow) -> TransactionRecord:
        return TransactionRecord(
            id=row.id,
            account_ref=row.account_ref,
            payer=row.payer,
            recipient=row.recipient,
            tx_hash=row.tx_hash,
            nonce=row.nonce,
            value=int(row.value),
            gas_limit=int(row.gas_limit),
            gas_price=int(row.gas_price),
            serialized_tx=row.tx,
            serialized_entry=row.entry,
            status=RecordStatus(row.status),
            aggregate_ids=tuple(row.aggregate_ids or ()),
            created_at=row.created_at,
            confirmed_at=row.confirmed_at,
            gas_cost=_int_or_none(row.gas_cost),
            gas_used=_int_or_none(row.gas_used),
            cumulative_gas_used=_int_or_none(row.cumulative_gas_used),
            receipt_status=row.receipt_status,
            block_number=row.block_number,
            block_hash=row.block_hash,
        )

    def get(self, record_id: int) -> Optional[TransactionRecord]:
        with self.session() as db:
            row = db.get(TransactionRow, record_id)
            return self._to_record(row) if row is not None else None

    def get_by_hash(self, tx_hash: str) -> Optional[TransactionRecord]:
        with self.session() as db:
            row = db.execute(
                select(TransactionRow).where(TransactionRow.tx_hash == tx_hash)
            ).scalar_one_or_none()
            return self._to_record(row) if row is not None else None

    def insert(self, record: TransactionRecord) -> None:
        with self.session() as db:
            db.add(self._to_row(record))

    def update_confirmation(
        self,
        tx_hash: str,
        gas_cost: int,
        receipt: Receipt,
        confirmed_at: datetime,
    ) -> int:
        """Returns the number of rows updated."""
        with self.session() as db:
            result = db.execute(
                update(TransactionRow)
                .where(TransactionRow.tx_hash == tx_hash)
                .values(
                    status=RecordStatus.CONFIRMED.value,
                    gas_cost=str(gas_cost),
                    gas_used=str(receipt.gas_used),
                    cumulative_gas_used=str(receipt.cumulative_gas_used),
                    receipt_status=receipt.status,
                    block_number=receipt.block_number,
                    block_hash=receipt.block_hash,
                    confirmed_at=confirmed_at,
                )
            )
            return result.rowcount

    def list_by_status(
        self, status: RecordStatus, payer: Optional[str] = None
    ) -> List[TransactionRecord]:
        query = select(TransactionRow).where(TransactionRow.status == status.value)
        if payer is not None:
            query = query.where(TransactionRow.payer == payer)

        with self.session() as db:
            rows = db.execute(query.order_by(TransactionRow.id)).scalars().all()
            return [self._to_record(row) for row in rows]


@dataclass
class StoredTransfer:
    """A record with its decoded signed transaction and source entry."""
    record: TransactionRecord
    signed_tx: SignedTransaction
    entry: TransferEntry

    @property
    def is_confirmed(self) -> bool:
        return self.record.is_confirmed


class IdempotencyStore:
    """
    Enforces at most one live transaction per transfer id.

    Wraps a TransactionStore and turns backend failures into the engine's
    storage errors.
    """

    def __init__(self, store: TransactionStore):
        self.store = store

    @staticmethod
    def _decode(record: TransactionRecord) -> StoredTransfer:
        try:
            signed_tx = SignedTransaction.from_json(record.serialized_tx)
            entry = TransferEntry.from_json(record.serialized_entry)
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(
                f"Corrupt transaction record {record.id}: {e}", operation="lookup"
            ) from e
        return StoredTransfer(record=record, signed_tx=signed_tx, entry=entry)

    def lookup(self, entry_id: int) -> Optional[StoredTransfer]:
        try:
            record = self.store.get(entry_id)
        except SQLAlchemyError as e:
            raise StorageError(f"failed to get transaction: {e}", operation="lookup") from e

        if record is None:
            return None
        return self._decode(record)

    def lookup_by_hash(self, tx_hash: str) -> Optional[StoredTransfer]:
        try:
            record = self.store.get_by_hash(tx_hash.lower())
        except SQLAlchemyError as e:
            raise StorageError(f"failed to get transaction: {e}", operation="lookup") from e

        if record is None:
            return None
        return self._decode(record)

    def create(self, record: TransactionRecord) -> None:
        try:
            self.store.insert(record)
        except IntegrityError as e:
            raise DuplicateRecordError(record.id, record.tx_hash) from e
        except SQLAlchemyError as e:
            raise StorageError(
                f"failed to create transaction record: {e}", operation="create"
            ) from e
        logger.info(f"Created transaction record: {record.id}, hash: {record.tx_hash}")

    def mark_confirmed(self, tx_hash: str, gas_cost: int, receipt: Receipt) -> None:
        try:
            updated = self.store.update_confirmation(
                tx_hash=tx_hash,
                gas_cost=gas_cost,
                receipt=receipt,
                confirmed_at=utcnow(),
            )
        except SQLAlchemyError as e:
            raise StorageError(
                f"failed to update transaction status: {e}", operation="mark_confirmed"
            ) from e

        if updated == 0:
            raise RecordNotFoundError(tx_hash)

    def pending(self, payer: Optional[str] = None) -> List[StoredTransfer]:
        """Records still waiting for a receipt, optionally for one payer only."""
        try:
            records = self.store.list_by_status(RecordStatus.GENERATED, payer=payer)
        except SQLAlchemyError as e:
            raise StorageError(f"failed to list pending records: {e}", operation="pending") from e
        return [self._decode(record) for record in records]

    @staticmethod
    def verify_matches(stored: StoredTransfer, entry: TransferEntry) -> None:
        """Raise EntryMismatchError when the stored entry is a different payment."""
        fields = stored.entry.diff(entry)
        if fields:
            raise EntryMismatchError(entry.id, fields)
