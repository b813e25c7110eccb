"""
In-memory property store implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Ids are allocated per storage kind, starting at 1, never reused
    - Filtering and sort order match SqlitePropertyStore

How to change safely:
    - Keep query semantics identical to the SQLite store; tests run
      against both
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from ..errors import BackendError, NotFoundError
from .base import (
    Cursor,
    Filter,
    Property,
    QueryIterator,
    Scalar,
    parse_sort,
    scalar_sort_key,
    window,
)

logger = logging.getLogger(__name__)


def _matches(properties: Sequence[Property], filters: Sequence[Filter]) -> bool:
    for f in filters:
        if not any(
            p.name == f.key and isinstance(p.value, str) and p.value == f.value
            for p in properties
        ):
            return False
    return True


def _sort_value(properties: Sequence[Property], name: str, descending: bool) -> Optional[Scalar]:
    """Smallest (or largest) value of a property, ignoring nulls when others exist."""
    values = [p.value for p in properties if p.name == name]
    non_null = [v for v in values if v is not None]
    if not non_null:
        return None
    pick = max if descending else min
    return pick(non_null, key=scalar_sort_key)


class InMemoryPropertyStore:
    """In-memory implementation of PropertyStore for testing.

    Attributes:
        default_limit: Page size used when a query has no limit

    Thread safety:
        Uses an asyncio lock around mutations. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryPropertyStore()
        >>> await store.connect()
        >>> entity_id = await store.put("u1--contact", None, [Property("name", "Alice")])
    """

    def __init__(self, default_limit: Optional[int] = None) -> None:
        """Initialize in-memory store.

        Args:
            default_limit: Default page size, None for unbounded
        """
        self.default_limit = default_limit
        self._kinds: Dict[str, Dict[int, List[Property]]] = defaultdict(dict)
        self._next_ids: Dict[str, int] = defaultdict(lambda: 1)
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryPropertyStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._kinds.clear()
        self._next_ids.clear()
        logger.debug("InMemoryPropertyStore closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise BackendError("Property store is not connected")

    async def put(
        self,
        storage_kind: str,
        entity_id: Optional[int],
        properties: Sequence[Property],
    ) -> int:
        """Write an entity, allocating an id if none is given."""
        self._check_connected()

        async with self._lock:
            entities = self._kinds[storage_kind]
            if entity_id is None:
                entity_id = self._next_ids[storage_kind]
            self._next_ids[storage_kind] = max(self._next_ids[storage_kind], entity_id + 1)
            entities[entity_id] = list(properties)

        logger.debug(
            "Entity written to in-memory store",
            extra={"storage_kind": storage_kind, "entity_id": entity_id},
        )
        return entity_id

    async def get(self, storage_kind: str, entity_id: int) -> List[Property]:
        """Read an entity's properties."""
        self._check_connected()

        properties = self._kinds.get(storage_kind, {}).get(entity_id)
        if properties is None:
            raise NotFoundError(storage_kind, entity_id)
        return list(properties)

    async def delete(self, storage_kind: str, entity_id: int) -> None:
        """Delete an entity."""
        self._check_connected()

        async with self._lock:
            entities = self._kinds.get(storage_kind, {})
            if entity_id not in entities:
                raise NotFoundError(storage_kind, entity_id)
            del entities[entity_id]

    async def query(
        self,
        storage_kind: str,
        filters: Sequence[Filter] = (),
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        start: Optional[Cursor] = None,
        end: Optional[Cursor] = None,
    ) -> QueryIterator:
        """Open an iterator over matching entities."""
        self._check_connected()

        entities = self._kinds.get(storage_kind, {})
        matching = sorted(
            entity_id
            for entity_id, properties in entities.items()
            if _matches(properties, filters)
        )

        sort_name, descending = parse_sort(sort)
        if sort_name:
            matching = [
                entity_id
                for entity_id in matching
                if any(p.name == sort_name for p in entities[entity_id])
            ]
            # Stable sort keeps id order among equal values, also when reversed
            matching.sort(
                key=lambda entity_id: scalar_sort_key(
                    _sort_value(entities[entity_id], sort_name, descending)
                ),
                reverse=descending,
            )

        if limit is None:
            limit = self.default_limit
        offset, count = window(limit, start, end)
        selected = matching[offset:] if count is None else matching[offset : offset + count]

        async def load(entity_id: int) -> Optional[List[Property]]:
            properties = self._kinds.get(storage_kind, {}).get(entity_id)
            return list(properties) if properties is not None else None

        return QueryIterator(selected, offset, load)

    def decode_cursor(self, token: str) -> Cursor:
        """Parse a cursor token."""
        return Cursor.decode(token)

    # Testing helpers

    def get_entity_count(self, storage_kind: str) -> int:
        """Get number of entities in a storage kind (testing helper)."""
        return len(self._kinds.get(storage_kind, {}))

    def storage_kinds(self) -> List[str]:
        """List storage kinds holding at least one entity (testing helper)."""
        return sorted(kind for kind, entities in self._kinds.items() if entities)
