"""
Error Classification

Defines the error taxonomy of the transfer engine.
Errors are split into recoverable (the engine retries or reconciles on its
own) and unrecoverable (surfaced to the caller and counted).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    VALIDATION = "validation"         # Bad recipient or input
    DUPLICATE = "duplicate"           # Transfer already confirmed
    MISMATCH = "mismatch"             # Stored entry differs from supplied entry
    ALREADY_KNOWN = "already_known"   # Node already holds the transaction
    STALE_NONCE = "stale_nonce"       # Nonce consumed by a mined transaction
    NETWORK = "network"               # Connectivity / transport issues
    RPC = "rpc"                       # Node returned a JSON-RPC error
    BROADCAST = "broadcast"           # Non-retryable broadcast rejection
    TIMEOUT = "timeout"               # Confirmation deadline passed
    STORAGE = "storage"               # Record store failure
    CHAIN = "chain"                   # Wrong chain / insufficient balance
    UNKNOWN = "unknown"


class BroadcastErrorKind(str, Enum):
    """Classification of a failed sendRawTransaction call."""

    ALREADY_KNOWN = "already_known"
    STALE_NONCE = "stale_nonce"
    FATAL = "fatal"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    entry_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors the engine recovers from without operator help.

    These errors are typically transient:
    - Network issues
    - The node already knowing a transaction
    - A nonce consumed by our own earlier, mined transaction
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(Exception):
    """
    Base class for errors that cannot be retried.

    These errors require human intervention:
    - Invalid recipients
    - Id reuse with different payment details
    - Broadcast rejections
    - Storage failures
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


# Recoverable errors
class TransientNetworkError(RecoverableError):
    """Transport-level or classified broadcast error the engine recovers from."""

    def __init__(
        self,
        message: str = "Network error",
        category: ErrorCategory = ErrorCategory.NETWORK,
        retry_after: Optional[float] = 5.0,
        tx_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=category,
            retry_after=retry_after,
            context=ErrorContext(
                category=category,
                recoverable=True,
                retry_after_seconds=retry_after,
                tx_hash=tx_hash,
                suggested_action="Retry with exponential backoff",
            ),
        )


class AlreadyKnownError(TransientNetworkError):
    """The node already holds this exact transaction."""

    def __init__(self, message: str = "already known", tx_hash: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.ALREADY_KNOWN,
            retry_after=None,
            tx_hash=tx_hash,
        )


class StaleNonceError(TransientNetworkError):
    """A transaction with this nonce has already been mined."""

    def __init__(self, message: str = "nonce too low", tx_hash: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.STALE_NONCE,
            retry_after=None,
            tx_hash=tx_hash,
        )


class RpcError(RecoverableError):
    """The node answered a JSON-RPC call with an error object."""

    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.RPC,
            context=ErrorContext(
                category=ErrorCategory.RPC,
                recoverable=True,
                details={"code": code, "method": method},
            ),
        )
        self.code = code
        self.method = method


class DuplicateSubmissionError(RecoverableError):
    """Transfer id already confirmed; the entry is skipped, not failed."""

    def __init__(self, entry_id: int, tx_hash: Optional[str] = None):
        super().__init__(
            f"Entry {entry_id} already processed",
            category=ErrorCategory.DUPLICATE,
            context=ErrorContext(
                category=ErrorCategory.DUPLICATE,
                recoverable=True,
                entry_id=entry_id,
                tx_hash=tx_hash,
            ),
        )
        self.entry_id = entry_id


# Unrecoverable errors
class InvalidRecipientError(UnrecoverableError):
    """Recipient address rejected by the address validator."""

    def __init__(self, entry_id: int, recipient: str):
        super().__init__(
            f"Entry {entry_id}: invalid recipient address {recipient!r}",
            category=ErrorCategory.VALIDATION,
            context=ErrorContext(
                category=ErrorCategory.VALIDATION,
                recoverable=False,
                entry_id=entry_id,
                suggested_action="Fix the recipient address in the input",
                details={"recipient": recipient},
            ),
        )


class InvalidEntryIdError(UnrecoverableError):
    """Transfer id does not fit the record store's signed 64-bit key."""

    def __init__(self, entry_id: int):
        super().__init__(
            f"Entry {entry_id}: id out of range for a signed 64-bit key",
            category=ErrorCategory.VALIDATION,
            context=ErrorContext(
                category=ErrorCategory.VALIDATION,
                recoverable=False,
                entry_id=entry_id,
                suggested_action="Use an id between -2**63 and 2**63 - 1",
            ),
        )


class EntryMismatchError(UnrecoverableError):
    """Stored entry for an id differs from the newly supplied one."""

    def __init__(self, entry_id: int, fields: Optional[list] = None):
        fields = fields or []
        super().__init__(
            f"entry mismatch for ID {entry_id}: stored entry differs from provided entry"
            + (f" ({', '.join(fields)})" if fields else ""),
            category=ErrorCategory.MISMATCH,
            context=ErrorContext(
                category=ErrorCategory.MISMATCH,
                recoverable=False,
                entry_id=entry_id,
                suggested_action="Use a new id for a different payment",
                details={"fields": fields},
            ),
        )
        self.entry_id = entry_id
        self.fields = fields


class FatalBroadcastError(UnrecoverableError):
    """Node rejected the transaction for a reason we cannot reconcile."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, nonce: Optional[int] = None):
        super().__init__(
            message,
            category=ErrorCategory.BROADCAST,
            context=ErrorContext(
                category=ErrorCategory.BROADCAST,
                recoverable=False,
                tx_hash=tx_hash,
                suggested_action="Inspect the Generated record before re-running",
                details={"nonce": nonce},
            ),
        )
        self.tx_hash = tx_hash
        self.nonce = nonce


class StorageError(UnrecoverableError):
    """Record store I/O failure; idempotency can no longer be trusted."""

    def __init__(self, message: str = "Storage error", operation: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.STORAGE,
            context=ErrorContext(
                category=ErrorCategory.STORAGE,
                recoverable=False,
                suggested_action="Check database connectivity",
                details={"operation": operation} if operation else {},
            ),
        )


class DuplicateRecordError(StorageError):
    """A record with this id or transaction hash already exists."""

    def __init__(self, entry_id: int, tx_hash: Optional[str] = None):
        super().__init__(
            f"Transaction record for entry {entry_id} already exists",
            operation="create",
        )
        self.context.entry_id = entry_id
        self.context.tx_hash = tx_hash
        self.entry_id = entry_id


class RecordNotFoundError(StorageError):
    """No record carries the given transaction hash."""

    def __init__(self, tx_hash: str):
        super().__init__(f"No transaction record with hash {tx_hash}", operation="mark_confirmed")
        self.context.tx_hash = tx_hash
        self.tx_hash = tx_hash


class ChainIdMismatchError(UnrecoverableError):
    """Node reports a different chain than configured."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"chain ID mismatch: expected {expected}, got {actual}",
            category=ErrorCategory.CHAIN,
            context=ErrorContext(
                category=ErrorCategory.CHAIN,
                recoverable=False,
                suggested_action="Point rpc_url at the configured network",
                details={"expected": expected, "actual": actual},
            ),
        )


class InsufficientBalanceError(UnrecoverableError):
    """Wallet cannot cover the batch total plus estimated gas."""

    def __init__(self, available: int, required: int):
        super().__init__(
            f"insufficient balance for transfers: have {available}, need {required}",
            category=ErrorCategory.CHAIN,
            context=ErrorContext(
                category=ErrorCategory.CHAIN,
                recoverable=False,
                suggested_action="Add funds to wallet or split the batch",
                details={"available": str(available), "required": str(required)},
            ),
        )
        self.available = available
        self.required = required


ALREADY_KNOWN_PATTERNS = [
    "already known",
    "known transaction",
    "already imported",
]

STALE_NONCE_PATTERNS = [
    "nonce too low",
    "nonce is too low",
]


def classify_broadcast_error(error: Exception) -> BroadcastErrorKind:
    """
    Classify a failed broadcast by its message.

    Anything that is not an "already known" or "nonce too low" rejection is
    fatal for the entry.
    """
    if isinstance(error, AlreadyKnownError):
        return BroadcastErrorKind.ALREADY_KNOWN
    if isinstance(error, StaleNonceError):
        return BroadcastErrorKind.STALE_NONCE

    message = str(error).lower()

    if any(p in message for p in ALREADY_KNOWN_PATTERNS):
        return BroadcastErrorKind.ALREADY_KNOWN

    if any(p in message for p in STALE_NONCE_PATTERNS):
        return BroadcastErrorKind.STALE_NONCE

    return BroadcastErrorKind.FATAL


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception raised by a chain or store call.

    Used by the retry strategy to decide whether a read-only call is worth
    repeating.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    message = str(error).lower()

    network_patterns = [
        "connection",
        "network",
        "unreachable",
        "refused",
        "reset by peer",
        "temporarily unavailable",
        "502",
        "503",
        "504",
    ]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            retry_after_seconds=5.0,
            suggested_action="Check network connectivity",
        )

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            retry_after_seconds=10.0,
            suggested_action="Retry with longer timeout",
        )

    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=False,
        suggested_action="Inspect the error",
    )
