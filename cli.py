#!/usr/bin/env python3
"""Command line entry point for batch transfers"""

import argparse
import asyncio
import sys
from typing import Optional

from batchsend.config import settings
from batchsend.core.execution import BatchReport, EntryOutcome, create_orchestrator
from batchsend.core.execution.models import MAX_ENTRY_ID, MIN_ENTRY_ID, RecordStatus
from batchsend.core.recovery import UnrecoverableError
from batchsend.db.store import IdempotencyStore, TransactionStore
from batchsend.logging_config import setup_logging
from batchsend.services import EntryFileError, KeyLoadError, load_account, parse_transfer_csv


def print_report(report: BatchReport):
    """Pretty print a batch report"""
    print("\n📦 Batch Summary")
    print("=" * 50)
    print(f"Total:       {report.total}")
    print(f"Succeeded:   {report.succeeded}")
    print(f"Failed:      {report.failed}")
    print(f"Skipped:     {report.skipped}")
    print(f"Invalid:     {report.invalid}")
    print(f"Unconfirmed: {report.unconfirmed}")
    if report.recovered:
        print(f"Recovered:   {report.recovered}")
    print(f"Duration:    {report.duration_seconds:.1f}s")

    problems = [
        r for r in report.results
        if r.outcome in (EntryOutcome.FAILED, EntryOutcome.INVALID, EntryOutcome.UNCONFIRMED)
    ]
    if problems:
        print("\nNeeds attention:")
        print("-" * 50)
        for result in problems:
            print(f"{result.entry.id:>8}  {result.outcome.value:<12} {result.tx_hash or '-'}")
            if result.error:
                print(f"          {result.error}")


async def cli_transfer(
    csv_path: str,
    key_file: Optional[str] = None,
    timeout: Optional[float] = None,
    recover: bool = False,
    skip_balance_check: bool = False,
    concurrent: bool = False,
) -> int:
    """CLI command to run a transfer batch"""
    try:
        entries = parse_transfer_csv(csv_path)
    except (OSError, EntryFileError) as e:
        print(f"❌ Failed to read transfers: {e}")
        return 1

    try:
        account = load_account(key_file=key_file)
    except KeyLoadError as e:
        print(f"❌ {e}")
        return 1

    print(f"🔍 Loaded {len(entries)} transfers, paying from {account.address}")

    orchestrator = create_orchestrator(account)
    try:
        await orchestrator.verify_chain_id()
        if not skip_balance_check:
            await orchestrator.check_balance(entries)

        report = await orchestrator.run(
            entries,
            timeout=timeout,
            recover=recover or settings.recover_pending,
            concurrent_monitoring=concurrent,
        )
    except UnrecoverableError as e:
        print(f"❌ {e}")
        return 1
    finally:
        await orchestrator.chain_client.close()

    print_report(report)
    return 0 if report.failed == 0 and report.unconfirmed == 0 else 2


def _open_store() -> IdempotencyStore:
    return IdempotencyStore(TransactionStore.from_url(settings.database_url))


def cli_status(ref: str) -> int:
    """CLI command to show the stored record of a transfer by id or transaction hash"""
    store = _open_store()

    if ref.lower().startswith("0x"):
        stored = store.lookup_by_hash(ref)
    else:
        try:
            entry_id = int(ref)
        except ValueError:
            print(f"❌ Not a transfer id or transaction hash: {ref}")
            return 1
        if not MIN_ENTRY_ID <= entry_id <= MAX_ENTRY_ID:
            print(f"❌ Transfer id out of range: {ref}")
            return 1
        stored = store.lookup(entry_id)

    if stored is None:
        print(f"❌ No transaction record for {ref}")
        return 1

    record = stored.record
    print(f"\n🧾 Transfer {record.id}")
    print("=" * 50)
    print(f"Status:    {record.status.value}")
    print(f"Tx Hash:   {record.tx_hash}")
    print(f"Payer:     {record.payer}")
    print(f"Recipient: {record.recipient}")
    print(f"Value:     {record.value}")
    print(f"Nonce:     {record.nonce}")
    print(f"Created:   {record.created_at}")
    if record.status == RecordStatus.CONFIRMED:
        print(f"Block:     {record.block_number}")
        print(f"Gas Cost:  {record.gas_cost}")
        print(f"Receipt:   {'success' if record.receipt_status == 1 else 'reverted'}")
        print(f"Confirmed: {record.confirmed_at}")
    return 0


def cli_pending() -> int:
    """CLI command to list records still waiting for a receipt"""
    pending = _open_store().pending()
    if not pending:
        print("✅ No pending transactions")
        return 0

    print(f"\n⏳ {len(pending)} pending transactions")
    print("-" * 50)
    for stored in pending:
        print(f"{stored.record.id:>8}  nonce {stored.record.nonce:<6} {stored.record.tx_hash}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batch transfer CLI")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=["auto", "json", "console"], help="Override LOG_FORMAT")
    subparsers = parser.add_subparsers(dest="command")

    transfer_parser = subparsers.add_parser("transfer", help="Submit a batch of transfers from a CSV file")
    transfer_parser.add_argument("-f", "--csv", required=True, help="Transfer file (id,account_ref,amount,recipient,aggregate_ids)")
    transfer_parser.add_argument("-k", "--key-file", help="Encrypted keystore (default: KEY_FILE)")
    transfer_parser.add_argument("--timeout", type=float, help="Confirmation deadline in seconds")
    transfer_parser.add_argument("--recover", action="store_true", help="Re-monitor pending records from earlier runs first")
    transfer_parser.add_argument("--skip-balance-check", action="store_true", help="Do not check the payer balance first")
    transfer_parser.add_argument("--concurrent", action="store_true", help="Poll receipts while still submitting")

    status_parser = subparsers.add_parser("status", help="Show the stored record of a transfer")
    status_parser.add_argument("ref", help="Transfer id or transaction hash")

    subparsers.add_parser("pending", help="List transactions still waiting for a receipt")

    return parser


async def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level, args.log_format)
    command = args.command.lower()

    if command == "transfer":
        return await cli_transfer(
            args.csv,
            key_file=args.key_file,
            timeout=args.timeout,
            recover=args.recover,
            skip_balance_check=args.skip_balance_check,
            concurrent=args.concurrent,
        )

    elif command == "status":
        return cli_status(args.ref)

    elif command == "pending":
        return cli_pending()

    print(f"❌ Unknown command: {command}")
    parser.print_help()
    return 1


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
