"""
Activity models: normalized transaction deltas and the analyzer's view
of them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Classification(Enum):
    """What kind of value movement a transaction carried."""
    NATIVE_TRANSFER = "native_transfer"
    TOKEN_TRANSFER = "token_transfer"
    MIXED_TRANSFER = "mixed_transfer"
    CONTRACT_CALL = "contract_call"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NativeChange:
    """Signed native-unit movement, as decimal strings."""
    from_delta: str  # "-1.5"
    to_delta: str    # "1.5"
    raw_value: int = 0

    @property
    def is_zero(self) -> bool:
        return self.raw_value == 0


ZERO_NATIVE = NativeChange(from_delta="0.0", to_delta="0.0", raw_value=0)


@dataclass(frozen=True)
class TokenChange:
    """One decoded Transfer event."""
    token_address: str
    symbol: str
    decimals: int
    from_address: str
    to_address: str
    raw_value: int
    formatted_value: str


@dataclass(frozen=True)
class ActivityDelta:
    """
    Normalized movement caused by one transaction.

    Created once by the classifier and never mutated; token_changes keeps
    the receipt's log order.
    """
    hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: Optional[str]
    native_change: NativeChange
    token_changes: Tuple[TokenChange, ...]
    classification: Classification
    method: Optional[str] = None  # advisory label from the call selector
    success: bool = True

    @property
    def has_native_transfer(self) -> bool:
        return not self.native_change.is_zero

    @property
    def token_addresses(self) -> List[str]:
        seen = []
        for change in self.token_changes:
            if change.token_address not in seen:
                seen.append(change.token_address)
        return seen


@dataclass(frozen=True)
class ActivityEntry:
    """One line of a sent/received listing."""
    kind: str  # "native" or "token"
    value: str
    counterparty: Optional[str]
    symbol: str
    token_address: Optional[str] = None


@dataclass
class Activity:
    """Result of matching a delta against the tracked set."""
    has_activity: bool
    node_name: str
    node_address: str
    delta: ActivityDelta
    received: List[ActivityEntry] = field(default_factory=list)
    sent: List[ActivityEntry] = field(default_factory=list)
