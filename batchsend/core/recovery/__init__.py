"""
Error Recovery Module

Provides error classification for broadcast failures and the retry
strategy used for read-only chain calls.
"""

from .errors import (
    ErrorCategory,
    ErrorContext,
    BroadcastErrorKind,
    RecoverableError,
    UnrecoverableError,
    TransientNetworkError,
    AlreadyKnownError,
    StaleNonceError,
    RpcError,
    DuplicateSubmissionError,
    InvalidRecipientError,
    InvalidEntryIdError,
    EntryMismatchError,
    FatalBroadcastError,
    StorageError,
    DuplicateRecordError,
    RecordNotFoundError,
    ChainIdMismatchError,
    InsufficientBalanceError,
    classify_broadcast_error,
    classify_error,
)
from .strategies import RetryConfig, RetryStrategy, ExponentialBackoffStrategy

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "BroadcastErrorKind",
    "RecoverableError",
    "UnrecoverableError",
    "TransientNetworkError",
    "AlreadyKnownError",
    "StaleNonceError",
    "RpcError",
    "DuplicateSubmissionError",
    "InvalidRecipientError",
    "InvalidEntryIdError",
    "EntryMismatchError",
    "FatalBroadcastError",
    "StorageError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "ChainIdMismatchError",
    "InsufficientBalanceError",
    "classify_broadcast_error",
    "classify_error",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
    "ExponentialBackoffStrategy",
]
