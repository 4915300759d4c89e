"""
Typed failures for the confidence pool core.

Store and feed adapters translate driver exceptions into these classes at the
point of failure, so the recovery layer dispatches on type instead of parsing
error messages.
"""

import enum
import json

from pydantic import ValidationError


class ErrorKind(str, enum.Enum):
    NETWORK = "network"
    PERMISSION = "permission"
    DATA = "data"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ConfidencePoolError(Exception):
    """Base exception for every failure raised by the core."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class StoreError(ConfidencePoolError):
    """Base exception for document store failures."""
    pass


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached (connection, timeout, failover)."""

    kind = ErrorKind.NETWORK


class StorePermissionError(StoreError):
    """Raised when the store rejects the caller's credentials."""

    kind = ErrorKind.PERMISSION


class CorruptDocumentError(StoreError):
    """Raised when a stored document cannot be parsed into its model."""

    kind = ErrorKind.DATA

    def __init__(self, path: str, detail: str):
        super().__init__(f"Corrupt document at {path}: {detail}")
        self.path = path


class StoreResourceError(StoreError):
    """Raised on quota, memory or document-size exhaustion."""

    kind = ErrorKind.RESOURCE


class TransactionFailedError(StoreError):
    """Raised when a multi-document transaction aborts."""
    pass


class PartialWriteError(StoreError):
    """Raised when a non-transactional fan-out stops after some sinks were written."""

    def __init__(self, message: str, writes_landed: int, cause: BaseException):
        super().__init__(message)
        self.writes_landed = writes_landed
        self.kind = classify(cause)


class GameFeedError(ConfidencePoolError):
    """Raised when the game result feed cannot produce results."""

    kind = ErrorKind.NETWORK


class GameFeedFormatError(GameFeedError):
    """Raised when the feed answers with a payload we cannot read."""

    kind = ErrorKind.DATA


class CircuitOpenError(ConfidencePoolError):
    """Raised instead of calling a subsystem whose circuit breaker is open."""

    kind = ErrorKind.NETWORK


def classify(error: BaseException) -> ErrorKind:
    """Map an exception to its recovery category."""
    if isinstance(error, ConfidencePoolError):
        return error.kind
    # Raw exceptions that escaped an adapter
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK
    if isinstance(error, PermissionError):
        return ErrorKind.PERMISSION
    if isinstance(error, (ValidationError, json.JSONDecodeError, KeyError, TypeError, ValueError)):
        return ErrorKind.DATA
    if isinstance(error, (MemoryError, RecursionError)):
        return ErrorKind.RESOURCE
    return ErrorKind.UNKNOWN
