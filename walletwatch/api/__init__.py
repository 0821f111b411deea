"""
External service clients: ledger JSON-RPC and exchange reputation.
"""

from .ledger import JsonRpcLedgerClient, LedgerClient
from .reputation import DebankReputationService, ReputationService, StaticReputationService

__all__ = [
    "LedgerClient",
    "JsonRpcLedgerClient",
    "ReputationService",
    "DebankReputationService",
    "StaticReputationService",
]
