"""
SQLite property store for SimplyPut.

This module manages the single shared SQLite database that holds every
tenant's entities as rows of typed properties. Tenants are separated by
storage kind only; the database itself is one namespace.

Invariants:
    - Entity ids are allocated per storage kind from kind_sequences and
      never reused, even after delete
    - put() replaces the whole property set in one transaction
    - Property order (seq) is the order the entity was written in
    - Values keep their type through value_type; booleans are not ints

How to change safely:
    - Schema migrations must be backward compatible
    - Keep sort/filter semantics identical to InMemoryPropertyStore
    - Use transactions for all write operations

Table schema:
    kind_sequences:
        - storage_kind TEXT PRIMARY KEY
        - next_id INTEGER

    entities:
        - storage_kind TEXT
        - entity_id INTEGER
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (storage_kind, entity_id)

    properties:
        - storage_kind TEXT
        - entity_id INTEGER
        - seq INTEGER
        - name TEXT
        - value_type TEXT (null, bool, int, float, str)
        - value (no affinity)
        - multiple INTEGER
        - PRIMARY KEY (storage_kind, entity_id, seq)
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from ..errors import BackendError, NotFoundError
from .base import Cursor, Filter, Property, QueryIterator, Scalar, parse_sort, window

logger = logging.getLogger(__name__)


def _to_column(value: Scalar) -> Tuple[str, Any]:
    if value is None:
        return "null", None
    if isinstance(value, bool):
        return "bool", int(value)
    if isinstance(value, int):
        return "int", value
    if isinstance(value, float):
        return "float", value
    return "str", value


def _from_column(value_type: str, value: Any) -> Scalar:
    if value_type == "null":
        return None
    if value_type == "bool":
        return bool(value)
    if value_type == "float":
        return float(value)
    return value


class SqlitePropertyStore:
    """SQLite-backed implementation of PropertyStore.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqlitePropertyStore("/var/lib/simplyput")
        >>> await store.connect()
        >>> entity_id = await store.put("u1--contact", None, [Property("name", "Alice")])
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "simplyput.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
        default_limit: Optional[int] = None,
    ) -> None:
        """Initialize the property store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
            default_limit: Default page size, None for unbounded
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self.default_limit = default_limit
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether the schema has been created."""
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Yields:
            SQLite connection

        Raises:
            BackendError: If the store is not connected or the driver fails
        """
        if not self._connected:
            raise BackendError("Property store is not connected")

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise BackendError(f"Cannot open property store: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        except sqlite3.Error as e:
            logger.error(f"Property store error: {e}", exc_info=True)
            raise BackendError(f"Property store error: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Per-kind id allocation
            CREATE TABLE IF NOT EXISTS kind_sequences (
                storage_kind TEXT PRIMARY KEY,
                next_id INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entities (
                storage_kind TEXT NOT NULL,
                entity_id INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (storage_kind, entity_id)
            );

            CREATE TABLE IF NOT EXISTS properties (
                storage_kind TEXT NOT NULL,
                entity_id INTEGER NOT NULL,
                seq INTEGER NOT NULL,
                name TEXT NOT NULL,
                value_type TEXT NOT NULL,
                value,
                multiple INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (storage_kind, entity_id, seq),
                FOREIGN KEY (storage_kind, entity_id)
                    REFERENCES entities(storage_kind, entity_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_properties_name_value
                ON properties(storage_kind, name, value);

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._connected = True
        try:
            with self._get_connection() as conn:
                self._create_schema(conn)
        except BackendError:
            self._connected = False
            raise
        logger.info(f"Property store ready: {self.db_path}")

    async def close(self) -> None:
        """Mark the store closed. Connections are per-operation."""
        self._connected = False

    def _allocate_id(self, conn: sqlite3.Connection, storage_kind: str) -> int:
        row = conn.execute(
            "SELECT next_id FROM kind_sequences WHERE storage_kind = ?",
            (storage_kind,),
        ).fetchone()
        entity_id = row["next_id"] if row else 1
        self._advance_sequence(conn, storage_kind, entity_id)
        return entity_id

    def _advance_sequence(self, conn: sqlite3.Connection, storage_kind: str, entity_id: int) -> None:
        conn.execute(
            """
            INSERT INTO kind_sequences (storage_kind, next_id) VALUES (?, ?)
            ON CONFLICT(storage_kind) DO UPDATE
                SET next_id = MAX(next_id, excluded.next_id)
            """,
            (storage_kind, entity_id + 1),
        )

    async def put(
        self,
        storage_kind: str,
        entity_id: Optional[int],
        properties: Sequence[Property],
    ) -> int:
        """Write an entity, replacing any existing property set.

        Args:
            storage_kind: Tenant-qualified kind
            entity_id: Existing id, or None to allocate one
            properties: Full property set

        Returns:
            The entity id
        """
        now = int(time.time() * 1000)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if entity_id is None:
                    entity_id = self._allocate_id(conn, storage_kind)
                else:
                    self._advance_sequence(conn, storage_kind, entity_id)

                conn.execute(
                    """
                    INSERT INTO entities (storage_kind, entity_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(storage_kind, entity_id) DO UPDATE SET updated_at = excluded.updated_at
                    """,
                    (storage_kind, entity_id, now, now),
                )
                conn.execute(
                    "DELETE FROM properties WHERE storage_kind = ? AND entity_id = ?",
                    (storage_kind, entity_id),
                )
                rows = []
                for seq, prop in enumerate(properties):
                    value_type, value = _to_column(prop.value)
                    rows.append(
                        (storage_kind, entity_id, seq, prop.name, value_type, value, int(prop.multiple))
                    )
                conn.executemany(
                    """
                    INSERT INTO properties
                    (storage_kind, entity_id, seq, name, value_type, value, multiple)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Wrote entity",
            extra={
                "storage_kind": storage_kind,
                "entity_id": entity_id,
                "properties": len(properties),
            },
        )
        return entity_id

    def _load(self, conn: sqlite3.Connection, storage_kind: str, entity_id: int) -> Optional[List[Property]]:
        exists = conn.execute(
            "SELECT 1 FROM entities WHERE storage_kind = ? AND entity_id = ?",
            (storage_kind, entity_id),
        ).fetchone()
        if not exists:
            return None

        cursor = conn.execute(
            """
            SELECT name, value_type, value, multiple FROM properties
            WHERE storage_kind = ? AND entity_id = ?
            ORDER BY seq
            """,
            (storage_kind, entity_id),
        )
        return [
            Property(
                name=row["name"],
                value=_from_column(row["value_type"], row["value"]),
                multiple=bool(row["multiple"]),
            )
            for row in cursor.fetchall()
        ]

    async def get(self, storage_kind: str, entity_id: int) -> List[Property]:
        """Read an entity's properties in written order."""
        with self._get_connection() as conn:
            properties = self._load(conn, storage_kind, entity_id)
        if properties is None:
            raise NotFoundError(storage_kind, entity_id)
        return properties

    async def delete(self, storage_kind: str, entity_id: int) -> None:
        """Delete an entity and its properties."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM entities WHERE storage_kind = ? AND entity_id = ?",
                (storage_kind, entity_id),
            )
            deleted = cursor.rowcount > 0

        if not deleted:
            raise NotFoundError(storage_kind, entity_id)
        logger.debug(
            "Deleted entity",
            extra={"storage_kind": storage_kind, "entity_id": entity_id},
        )

    async def query(
        self,
        storage_kind: str,
        filters: Sequence[Filter] = (),
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        start: Optional[Cursor] = None,
        end: Optional[Cursor] = None,
    ) -> QueryIterator:
        """Resolve matching ids and return an iterator that loads them lazily."""
        query = "SELECT e.entity_id FROM entities e WHERE e.storage_kind = ?"
        params: List[Any] = [storage_kind]

        has_property = """
            SELECT {select} FROM properties p
            WHERE p.storage_kind = e.storage_kind AND p.entity_id = e.entity_id
            AND p.name = ?
        """
        for f in filters:
            query += f" AND EXISTS ({has_property.format(select='1')}"
            query += " AND p.value_type = 'str' AND p.value = ?)"
            params.extend([f.key, f.value])

        sort_name, descending = parse_sort(sort)
        if sort_name:
            query += f" AND EXISTS ({has_property.format(select='1')})"
            params.append(sort_name)
            aggregate = "MAX(p.value)" if descending else "MIN(p.value)"
            direction = "DESC" if descending else "ASC"
            query += f" ORDER BY ({has_property.format(select=aggregate)}) {direction}, e.entity_id ASC"
            params.append(sort_name)
        else:
            query += " ORDER BY e.entity_id ASC"

        if limit is None:
            limit = self.default_limit
        offset, count = window(limit, start, end)
        query += " LIMIT ? OFFSET ?"
        params.extend([-1 if count is None else count, offset])

        with self._get_connection() as conn:
            entity_ids = [row["entity_id"] for row in conn.execute(query, params).fetchall()]

        async def load(entity_id: int) -> Optional[List[Property]]:
            with self._get_connection() as conn:
                return self._load(conn, storage_kind, entity_id)

        return QueryIterator(entity_ids, offset, load)

    def decode_cursor(self, token: str) -> Cursor:
        """Parse a cursor token."""
        return Cursor.decode(token)

    async def get_stats(self) -> dict[str, int]:
        """Get row counts for the whole database.

        Returns:
            Dictionary with counts
        """
        with self._get_connection() as conn:
            stats = {}

            cursor = conn.execute("SELECT COUNT(*) FROM entities")
            stats["entities"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM properties")
            stats["properties"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM kind_sequences")
            stats["storage_kinds"] = cursor.fetchone()[0]

            return stats
