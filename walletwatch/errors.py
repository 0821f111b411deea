"""
Error Types
===========

Recoverable errors are handled by the component that owns the item:
- TransientFetchError: ledger / metadata call failed - skip the item
- ParseFailure: malformed log or payload - skip the transaction
- ThrottleError: sink asked us to slow down - requeue with backoff
- PermanentError: sink rejected the alert, or retries exhausted - drop
- DuplicateEnrollmentError: wallet already tracked - no-op

ConfigurationError is fatal at startup; StorageError is fatal when the
graph store cannot be reached at all.
"""

from typing import Optional


class WalletWatchError(Exception):
    """Base class for all monitor errors."""


class TransientFetchError(WalletWatchError):
    """A ledger or metadata request failed; the caller should skip the item."""


class ParseFailure(WalletWatchError):
    """A log entry or call payload could not be decoded."""


class ThrottleError(WalletWatchError):
    """The notification sink rejected a send because of rate limiting."""

    def __init__(self, retry_after: Optional[float] = None, message: str = "rate limited"):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentError(WalletWatchError):
    """The notification sink rejected a send for a non-retryable reason."""


class DuplicateEnrollmentError(WalletWatchError):
    """A node with this wallet already exists in the graph store."""

    def __init__(self, wallet: str):
        super().__init__(f"wallet already tracked: {wallet}")
        self.wallet = wallet


class ConfigurationError(WalletWatchError):
    """Invalid or missing configuration detected at startup."""


class StorageError(WalletWatchError):
    """The graph store or state database failed."""
