"""Load transfer entries from a CSV file."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import List, Union

from ..core.execution.models import TransferEntry

EXPECTED_HEADERS = ["id", "account_ref", "amount", "recipient", "aggregate_ids"]


class EntryFileError(ValueError):
    """The transfer file is malformed."""


def _validate_headers(actual: List[str]) -> bool:
    if len(actual) != len(EXPECTED_HEADERS):
        return False
    return all(h.strip().lower() == e for h, e in zip(actual, EXPECTED_HEADERS))


def parse_transfer_csv(path: Union[str, Path]) -> List[TransferEntry]:
    """
    Parse a transfer file.

    The first row must be the header
    ``id,account_ref,amount,recipient,aggregate_ids``; aggregate ids are
    whitespace separated integers and may be empty.
    """
    with open(path, newline="", encoding="utf-8") as handle:
        records = list(csv.reader(handle))

    if len(records) < 2:
        raise EntryFileError("CSV file must contain at least a header row and one data row")

    if not _validate_headers(records[0]):
        raise EntryFileError(f"invalid CSV headers, expected: {EXPECTED_HEADERS}")

    entries: List[TransferEntry] = []
    for line_no, record in enumerate(records[1:], start=2):
        if not any(cell.strip() for cell in record):
            continue
        if len(record) != len(EXPECTED_HEADERS):
            raise EntryFileError(f"line {line_no}: invalid record length: {record}")

        try:
            entry = TransferEntry(
                id=int(record[0]),
                account_ref=record[1].strip(),
                amount=int(record[2]),
                recipient=record[3].strip(),
                aggregate_ids=tuple(int(i) for i in record[4].split()),
            )
        except ValueError as e:
            raise EntryFileError(f"line {line_no}: {e}") from e

        if not entry.has_storable_id:
            raise EntryFileError(f"line {line_no}: id {entry.id} out of range for a signed 64-bit key")
        if entry.amount <= 0:
            raise EntryFileError(f"line {line_no}: amount must be positive")
        entries.append(entry)

    return entries
