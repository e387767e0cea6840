from __future__ import annotations

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    DateTime,
    Integer,
    Text,
    JSON,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TransactionRow(Base):
    """One submission attempt per transfer id.

    The primary key is the caller-assigned transfer id, not an autoincrement
    counter, so a second insert for the same transfer is rejected. Amounts are
    kept as decimal strings to avoid precision loss on every backend.
    """

    __tablename__ = "transactions"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    account_ref = Column(String(128), nullable=False)
    payer = Column(String(42), nullable=False, index=True)
    nonce = Column(BigInteger, nullable=False)
    recipient = Column(String(42), nullable=False)
    tx_hash = Column(String(66), nullable=False, unique=True)

    value = Column(String(80), nullable=False)
    gas_limit = Column(String(80), nullable=False)
    gas_price = Column(String(80), nullable=False)

    # generated / confirmed
    status = Column(String(16), nullable=False, default="generated", index=True)

    # filled on confirmation
    gas_cost = Column(String(80), nullable=True)
    gas_used = Column(String(80), nullable=True)
    cumulative_gas_used = Column(String(80), nullable=True)
    receipt_status = Column(Integer, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    block_hash = Column(String(66), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True, index=True)

    aggregate_ids = Column(JSON, nullable=True)
    tx = Column(Text, nullable=False)
    entry = Column(Text, nullable=False)
