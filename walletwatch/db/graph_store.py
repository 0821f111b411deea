"""
Graph Store
===========

SQLite persistence for the referral graph of tracked wallets.

Every row carries a namespace (the storage prefix) so several monitors
can share one database file without seeing each other's wallets. The
(namespace, wallet) primary key makes wallet uniqueness atomic at the
storage layer.

Public methods are coroutines; the blocking SQLite work runs in a worker
thread so each graph read/write is a suspension point for the loop.
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Union

from ..errors import DuplicateEnrollmentError, StorageError
from ..models import TrackedNode, TrackedSnapshot

logger = logging.getLogger(__name__)


class GraphStore:
    """
    Tracked-wallet graph, namespaced by prefix.

    Nodes are immutable except for their name; removal never cascades to
    descendants (their referrer simply dangles).
    """

    def __init__(self, db_path: Union[str, Path], prefix: str = "wallet:"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            prefix: Namespace for all keys written by this instance
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open graph store {self.db_path}: {e}")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema."""
        try:
            with self._get_connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS tracked_nodes (
                        namespace TEXT NOT NULL,
                        wallet TEXT NOT NULL,
                        id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        referrer TEXT NOT NULL DEFAULT '',
                        level INTEGER NOT NULL DEFAULT 1,
                        ancestor_chain TEXT NOT NULL DEFAULT '[]',
                        created_at TEXT NOT NULL,
                        PRIMARY KEY (namespace, wallet)
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_tracked_nodes_referrer
                    ON tracked_nodes(namespace, referrer)
                """)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialize graph store: {e}")

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> TrackedNode:
        return TrackedNode(
            id=row["id"],
            wallet=row["wallet"],
            name=row["name"],
            referrer=row["referrer"],
            level=row["level"],
            ancestor_chain=tuple(json.loads(row["ancestor_chain"])),
            created_at=row["created_at"],
        )

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise StorageError(f"Graph store error: {e}")

    # -------------------------------------------------------------------------
    # Sync implementations
    # -------------------------------------------------------------------------

    def _exists(self, wallet: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM tracked_nodes WHERE namespace = ? AND wallet = ?",
                (self.prefix, wallet.lower()),
            ).fetchone()
            return row is not None

    def _insert(self, node: TrackedNode):
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO tracked_nodes
                        (namespace, wallet, id, name, referrer, level, ancestor_chain, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    self.prefix,
                    node.wallet.lower(),
                    node.id,
                    node.name,
                    node.referrer.lower(),
                    node.level,
                    json.dumps(list(node.ancestor_chain)),
                    node.created_at,
                ))
        except sqlite3.IntegrityError:
            raise DuplicateEnrollmentError(node.wallet)

    def _get(self, wallet: str) -> Optional[TrackedNode]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM tracked_nodes WHERE namespace = ? AND wallet = ?",
                (self.prefix, wallet.lower()),
            ).fetchone()
            return self._row_to_node(row) if row else None

    def _remove(self, wallet: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM tracked_nodes WHERE namespace = ? AND wallet = ?",
                (self.prefix, wallet.lower()),
            )
            return cursor.rowcount > 0

    def _rename(self, wallet: str, name: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE tracked_nodes SET name = ? WHERE namespace = ? AND wallet = ?",
                (name, self.prefix, wallet.lower()),
            )
            return cursor.rowcount > 0

    def _list_nodes(self) -> List[TrackedNode]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM tracked_nodes WHERE namespace = ? ORDER BY level, created_at",
                (self.prefix,),
            ).fetchall()
            return [self._row_to_node(row) for row in rows]

    def _clear_all(self) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM tracked_nodes WHERE namespace = ?", (self.prefix,)
            )
            return cursor.rowcount

    def _count(self) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM tracked_nodes WHERE namespace = ?", (self.prefix,)
            ).fetchone()
            return row[0]

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def exists(self, wallet: str) -> bool:
        return await self._run(self._exists, wallet)

    async def insert(self, node: TrackedNode):
        """
        Insert a node.

        Raises:
            DuplicateEnrollmentError: If the wallet is already stored
        """
        await self._run(self._insert, node)
        logger.debug(f"Stored node {node.wallet} (level {node.level})")

    async def get(self, wallet: str) -> Optional[TrackedNode]:
        return await self._run(self._get, wallet)

    async def remove(self, wallet: str) -> bool:
        """Remove a node. Descendants keep their (now dangling) referrer."""
        return await self._run(self._remove, wallet)

    async def rename(self, wallet: str, name: str) -> bool:
        return await self._run(self._rename, wallet, name)

    async def list_all(self) -> List[str]:
        nodes = await self.list_nodes()
        return [node.wallet for node in nodes]

    async def list_nodes(self) -> List[TrackedNode]:
        return await self._run(self._list_nodes)

    async def clear_all(self) -> int:
        """Delete every node in this namespace. Returns the number removed."""
        removed = await self._run(self._clear_all)
        logger.info(f"Cleared {removed} nodes from namespace {self.prefix!r}")
        return removed

    async def count(self) -> int:
        return await self._run(self._count)

    async def add_node(self, wallet: str, name: str, referrer: str = "") -> TrackedNode:
        """
        Create and insert a node, deriving level and ancestry from referrer.

        An unknown referrer makes the node a root.

        Raises:
            DuplicateEnrollmentError: If the wallet is already stored
        """
        parent = await self.get(referrer) if referrer else None
        if referrer and parent is None:
            logger.warning(f"Referrer {referrer} not tracked, storing {wallet} as root")

        node = TrackedNode.create(wallet, name, parent)
        await self.insert(node)
        return node

    async def load_snapshot(self) -> TrackedSnapshot:
        """Frozen tracked set and name index for one scan."""
        return TrackedSnapshot.from_nodes(await self.list_nodes())
