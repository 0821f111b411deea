from .graph_store import GraphStore
from .state_db import StateDB

__all__ = ["GraphStore", "StateDB"]
