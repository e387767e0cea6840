"""
Transfer Execution Layer

Provides the pieces that turn transfer entries into confirmed transactions:
- NonceManager: Hands out nonces for concurrent submissions
- TransactionAssembler: Builds and signs a transaction for an entry
- Broadcaster: Submits signed transactions and classifies rejections
- ReceiptMonitor: Confirms every in-flight transaction from one loop
- BatchOrchestrator: Runs a whole batch and reports per-entry outcomes

Usage:
    from batchsend.core.execution import create_orchestrator

    orchestrator = create_orchestrator(account)
    await orchestrator.verify_chain_id()
    report = await orchestrator.run(entries)
"""

from .models import (
    TransferKind,
    RecordStatus,
    EntryOutcome,
    BroadcastOutcome,
    TransferEntry,
    UnsignedTransaction,
    SignedTransaction,
    Receipt,
    TransactionRecord,
    PendingSubmission,
    NonceLedger,
    BroadcastResult,
    MonitorReport,
    EntryResult,
    BatchReport,
)

from .nonce_manager import NonceManager

from .tx_builder import (
    TransactionBuilder,
    LocalSigner,
    TransactionAssembler,
)

from .broadcaster import Broadcaster

from .receipt_monitor import ReceiptMonitor

from .orchestrator import (
    BatchOrchestrator,
    create_orchestrator,
)

__all__ = [
    # Models
    "TransferKind",
    "RecordStatus",
    "EntryOutcome",
    "BroadcastOutcome",
    "TransferEntry",
    "UnsignedTransaction",
    "SignedTransaction",
    "Receipt",
    "TransactionRecord",
    "PendingSubmission",
    "NonceLedger",
    "BroadcastResult",
    "MonitorReport",
    "EntryResult",
    "BatchReport",
    # Nonce
    "NonceManager",
    # Builder
    "TransactionBuilder",
    "LocalSigner",
    "TransactionAssembler",
    # Broadcast
    "Broadcaster",
    # Monitor
    "ReceiptMonitor",
    # Orchestrator
    "BatchOrchestrator",
    "create_orchestrator",
]
