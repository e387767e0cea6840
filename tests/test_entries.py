import pytest

from batchsend.core.execution import TransferEntry
from batchsend.services.entries import EntryFileError, parse_transfer_csv


HEADER = "id,account_ref,amount,recipient,aggregate_ids\n"
RECIPIENT = "0x1111111111111111111111111111111111111111"


def write_csv(tmp_path, body: str):
    path = tmp_path / "transfers.csv"
    path.write_text(HEADER + body, encoding="utf-8")
    return path


def test_parse_entries(tmp_path):
    path = write_csv(tmp_path, f"1,acct-1,1000,{RECIPIENT},10 11\n2,acct-2,2000,{RECIPIENT},\n")

    entries = parse_transfer_csv(path)

    assert entries == [
        TransferEntry(id=1, account_ref="acct-1", amount=1000, recipient=RECIPIENT),
        TransferEntry(id=2, account_ref="acct-2", amount=2000, recipient=RECIPIENT),
    ]
    assert entries[0].aggregate_ids == (10, 11)
    assert entries[1].aggregate_ids == ()


def test_large_amounts_are_exact(tmp_path):
    path = write_csv(tmp_path, f"1,acct-1,123456789012345678901234567890,{RECIPIENT},\n")

    assert parse_transfer_csv(path)[0].amount == 123456789012345678901234567890


def test_blank_rows_are_skipped(tmp_path):
    path = write_csv(tmp_path, f"\n1,acct-1,5,{RECIPIENT},\n,,,,\n")

    assert len(parse_transfer_csv(path)) == 1


def test_header_mismatch(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text(f"id,amount,recipient\n1,5,{RECIPIENT}\n", encoding="utf-8")

    with pytest.raises(EntryFileError, match="invalid CSV headers"):
        parse_transfer_csv(path)


def test_header_only(tmp_path):
    path = write_csv(tmp_path, "")

    with pytest.raises(EntryFileError):
        parse_transfer_csv(path)


def test_bad_amount_reports_line(tmp_path):
    path = write_csv(tmp_path, f"1,acct-1,5,{RECIPIENT},\n2,acct-2,abc,{RECIPIENT},\n")

    with pytest.raises(EntryFileError, match="line 3"):
        parse_transfer_csv(path)


def test_non_positive_amount(tmp_path):
    path = write_csv(tmp_path, f"1,acct-1,0,{RECIPIENT},\n")

    with pytest.raises(EntryFileError, match="amount must be positive"):
        parse_transfer_csv(path)


def test_wrong_column_count(tmp_path):
    path = write_csv(tmp_path, f"1,acct-1,5,{RECIPIENT}\n")

    with pytest.raises(EntryFileError, match="invalid record length"):
        parse_transfer_csv(path)


def test_id_outside_signed_64_bit_range(tmp_path):
    path = write_csv(tmp_path, f"{2**63},acct-1,5,{RECIPIENT},\n")

    with pytest.raises(EntryFileError, match="line 2: id .* out of range"):
        parse_transfer_csv(path)


def test_id_at_signed_64_bit_bounds(tmp_path):
    path = write_csv(tmp_path, f"{2**63 - 1},acct-1,5,{RECIPIENT},\n{-(2**63)},acct-2,5,{RECIPIENT},\n")

    assert [e.id for e in parse_transfer_csv(path)] == [2**63 - 1, -(2**63)]
