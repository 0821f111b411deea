"""
Referral graph models.
"""

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Mapping, Optional, Tuple
from types import MappingProxyType


@dataclass(frozen=True)
class TrackedNode:
    """
    One monitored wallet.

    level is 1 for roots and parent.level + 1 otherwise; ancestor_chain is
    the parent's chain followed by the parent's id.
    """
    id: str
    wallet: str
    name: str
    referrer: str = ""
    level: int = 1
    ancestor_chain: Tuple[str, ...] = ()
    created_at: str = ""

    @classmethod
    def create(
        cls,
        wallet: str,
        name: str,
        parent: Optional["TrackedNode"] = None,
    ) -> "TrackedNode":
        """
        Build a new node, deriving level and ancestry from its parent.

        Args:
            wallet: Wallet address (lowercased here)
            name: Display name
            parent: Inducing node, or None for a root
        """
        if parent is None:
            referrer, level, chain = "", 1, ()
        else:
            referrer = parent.wallet
            level = parent.level + 1
            chain = tuple(parent.ancestor_chain) + (parent.id,)

        return cls(
            id=uuid.uuid4().hex,
            wallet=wallet.lower(),
            name=name,
            referrer=referrer,
            level=level,
            ancestor_chain=chain,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

    def renamed(self, name: str) -> "TrackedNode":
        return replace(self, name=name)

    @property
    def is_root(self) -> bool:
        return not self.referrer


@dataclass(frozen=True)
class EnrollmentRequest:
    """A candidate wallet the detector wants to add, and who induced it."""
    candidate_wallet: str
    inducing_wallet: str
    tx_hash: str = ""
    reason: str = ""  # "native" or "token"
    amount: str = ""
    symbol: str = ""


class TrackedSnapshot:
    """
    Frozen view of the tracked set and name index.

    Taken at scan start and passed explicitly to the scanner, analyzer and
    detector. Refreshed from the graph store at controlled points only.
    """

    __slots__ = ("_wallets", "_names")

    def __init__(self, names: Optional[Mapping[str, str]] = None):
        normalized: Dict[str, str] = {
            wallet.lower(): name for wallet, name in (names or {}).items()
        }
        self._names = MappingProxyType(normalized)
        self._wallets = frozenset(normalized)

    @classmethod
    def from_nodes(cls, nodes) -> "TrackedSnapshot":
        return cls({node.wallet: node.name for node in nodes})

    @property
    def wallets(self) -> FrozenSet[str]:
        return self._wallets

    @property
    def names(self) -> Mapping[str, str]:
        return self._names

    def __contains__(self, wallet) -> bool:
        return bool(wallet) and wallet.lower() in self._wallets

    def __len__(self) -> int:
        return len(self._wallets)

    def name_of(self, wallet: str, default: str = "Unknown") -> str:
        return self._names.get(wallet.lower(), default)

    def with_wallet(self, wallet: str, name: str) -> "TrackedSnapshot":
        """Return a new snapshot that also contains wallet."""
        names = dict(self._names)
        names[wallet.lower()] = name
        return TrackedSnapshot(names)

    def without_wallet(self, wallet: str) -> "TrackedSnapshot":
        names = dict(self._names)
        names.pop(wallet.lower(), None)
        return TrackedSnapshot(names)
