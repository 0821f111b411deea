"""
Raw ledger records as returned by the LedgerClient.

Hex quantities from JSON-RPC are converted to int at the client boundary;
addresses are lowercased.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class RawTransaction:
    """A top-level transaction inside a block."""
    hash: str
    block_number: int
    transaction_index: int
    from_address: str
    to_address: Optional[str]  # None for contract creation
    value: int                 # wei
    input_data: str = "0x"


@dataclass
class Block:
    """A block with its full transaction objects."""
    number: int
    timestamp: int
    transactions: List[RawTransaction] = field(default_factory=list)


@dataclass
class LogEntry:
    """One event log from a receipt."""
    address: str
    topics: List[str]
    data: str
    log_index: int = 0


@dataclass
class Receipt:
    """Transaction receipt (only the fields the monitor reads)."""
    transaction_hash: str
    status: int
    logs: List[LogEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class TokenMetadata:
    """Fungible token metadata."""
    name: str = "Unknown"
    symbol: str = "UNKNOWN"
    decimals: int = 18


UNKNOWN_TOKEN = TokenMetadata()
