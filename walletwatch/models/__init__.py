"""
Data Models
===========

Shared dataclasses passed between the scanner, analyzer, detector,
graph store and delivery queue.
"""

from .activity import (
    Activity,
    ActivityDelta,
    ActivityEntry,
    Classification,
    NativeChange,
    TokenChange,
    ZERO_NATIVE,
)
from .alert import Alert, AlertState
from .ledger import Block, LogEntry, RawTransaction, Receipt, TokenMetadata, UNKNOWN_TOKEN
from .node import EnrollmentRequest, TrackedNode, TrackedSnapshot

__all__ = [
    "Activity",
    "ActivityDelta",
    "ActivityEntry",
    "Classification",
    "NativeChange",
    "TokenChange",
    "ZERO_NATIVE",
    "Alert",
    "AlertState",
    "Block",
    "LogEntry",
    "RawTransaction",
    "Receipt",
    "TokenMetadata",
    "UNKNOWN_TOKEN",
    "EnrollmentRequest",
    "TrackedNode",
    "TrackedSnapshot",
]
