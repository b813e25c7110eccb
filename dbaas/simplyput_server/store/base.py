"""
Base protocol and types for the property store abstraction.

This module defines the PropertyStore protocol every backend implements,
along with the types that cross it: properties, filters, cursors and the
forward-only query iterator.

Invariants:
    - A Property value is always a scalar (None, bool, int64, float, str)
    - Entity ids are positive, allocated per storage kind and never reused
    - put() with an id replaces the entity's whole property set
    - A Cursor is a position in one query's ordering; mixing cursors across
      queries is undefined

How to change safely:
    - Protocol changes require updating every implementation
    - Cursor tokens are held by clients; keep decode() accepting old tokens
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import math
from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)

from ..errors import InvalidCursorError

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

Scalar = Union[None, bool, int, float, str]

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def is_scalar(value: object) -> bool:
    """Whether the store can hold the value as a single property value."""
    if value is None or isinstance(value, (bool, str)):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, int):
        return INT64_MIN <= value <= INT64_MAX
    return False


def scalar_sort_key(value: Scalar) -> Tuple[int, Scalar]:
    """Order scalars the way the stores do: null < numbers < strings."""
    if value is None:
        return (0, 0)
    if isinstance(value, str):
        return (2, value)
    return (1, value)


@dataclass(frozen=True)
class Property:
    """The store's atomic unit.

    Attributes:
        name: Dotted path (e.g. "address.city")
        value: Scalar value
        multiple: Whether the property is one element of a repeated value
    """

    name: str
    value: Scalar
    multiple: bool = False


@dataclass(frozen=True)
class Filter:
    """String equality filter on a property name."""

    key: str
    value: str


@dataclass(frozen=True)
class Cursor:
    """Resumable position within a query's result ordering.

    The token is URL-safe base64 of a small JSON object. Clients treat it
    as opaque.
    """

    offset: int

    def encode(self) -> str:
        raw = json.dumps({"o": self.offset}, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> Cursor:
        """Parse a token produced by encode().

        Raises:
            InvalidCursorError: If the token is not a cursor
        """
        try:
            padded = token + "=" * (-len(token) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
            offset = data["o"]
        except (binascii.Error, ValueError, UnicodeError, KeyError, TypeError) as e:
            raise InvalidCursorError(f"Invalid cursor: {e}") from e

        if not isinstance(offset, int) or isinstance(offset, bool):
            raise InvalidCursorError("Invalid cursor offset")
        if not 0 <= offset <= INT64_MAX:
            raise InvalidCursorError("Cursor offset out of range")
        return cls(offset=offset)

    def __str__(self) -> str:
        return self.encode()


Row = Tuple[int, List[Property]]


class QueryIterator:
    """Forward-only iterator over one query's matching entities.

    The store resolves the ordered entity ids up front; properties are
    loaded one entity at a time as the caller advances, so a store failure
    can surface mid-iteration. cursor() is valid at any point, including
    before the first row.

    Example:
        >>> iterator = await store.query("u1--contact", limit=10)
        >>> async for entity_id, properties in iterator:
        ...     print(entity_id, iterator.cursor())
    """

    def __init__(
        self,
        entity_ids: Sequence[int],
        start_offset: int,
        load: Callable[[int], Awaitable[Optional[List[Property]]]],
    ) -> None:
        """Initialize the iterator.

        Args:
            entity_ids: Matching ids in query order, already windowed
            start_offset: Position of the first id within the full ordering
            load: Loads an entity's properties, None if it vanished
        """
        self._entity_ids = list(entity_ids)
        self._index = 0
        self._position = start_offset
        self._load = load

    def cursor(self) -> Cursor:
        """Cursor positioned just after the last row returned."""
        return Cursor(offset=self._position)

    def __aiter__(self) -> QueryIterator:
        return self

    async def __anext__(self) -> Row:
        while self._index < len(self._entity_ids):
            entity_id = self._entity_ids[self._index]
            properties = await self._load(entity_id)
            self._index += 1
            self._position += 1
            if properties is None:
                # Deleted between resolving ids and loading it
                continue
            return entity_id, properties
        raise StopAsyncIteration


def window(
    limit: Optional[int],
    start: Optional[Cursor],
    end: Optional[Cursor],
) -> Tuple[int, Optional[int]]:
    """Compute (offset, count) for a query from its bounds.

    Returns:
        Offset of the first row and the number of rows to fetch
        (None for no bound)
    """
    offset = start.offset if start else 0
    count: Optional[int] = None
    if end is not None:
        count = max(0, end.offset - offset)
    if limit is not None:
        count = limit if count is None else min(count, limit)
    return offset, count


@runtime_checkable
class PropertyStore(Protocol):
    """Protocol for property store backends.

    Consistency contract:
        - Each call is atomic for the entity it touches
        - Last write wins; there is no version check

    Example:
        >>> store = SqlitePropertyStore("/var/lib/simplyput")
        >>> await store.connect()
        >>> entity_id = await store.put("u1--contact", None, [Property("name", "Alice")])
        >>> await store.get("u1--contact", entity_id)
        [Property(name='name', value='Alice', multiple=False)]
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend. Must be called before any other operation."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def put(
        self,
        storage_kind: str,
        entity_id: Optional[int],
        properties: Sequence[Property],
    ) -> int:
        """Write an entity.

        Args:
            storage_kind: Tenant-qualified kind
            entity_id: Existing id to replace, or None to allocate one
            properties: Full property set of the entity

        Returns:
            The entity id

        Raises:
            BackendError: If the write fails
        """
        ...

    @abstractmethod
    async def get(self, storage_kind: str, entity_id: int) -> List[Property]:
        """Read an entity's properties in stored order.

        Raises:
            NotFoundError: If the entity does not exist
            BackendError: If the read fails
        """
        ...

    @abstractmethod
    async def delete(self, storage_kind: str, entity_id: int) -> None:
        """Delete an entity.

        Raises:
            NotFoundError: If the entity does not exist
            BackendError: If the delete fails
        """
        ...

    @abstractmethod
    async def query(
        self,
        storage_kind: str,
        filters: Sequence[Filter] = (),
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        start: Optional[Cursor] = None,
        end: Optional[Cursor] = None,
    ) -> QueryIterator:
        """Open a forward-only iterator over matching entities.

        Args:
            storage_kind: Tenant-qualified kind
            filters: String equality filters, ANDed
            sort: Property name, "-" prefix for descending
            limit: Maximum rows; None uses the store's default page size
            start: Resume position
            end: Stop position

        Raises:
            BackendError: If the query fails
        """
        ...

    @abstractmethod
    def decode_cursor(self, token: str) -> Cursor:
        """Parse a cursor token.

        Raises:
            InvalidCursorError: If the token is not a cursor of this store
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called."""
        ...


def parse_sort(sort: Optional[str]) -> Tuple[Optional[str], bool]:
    """Split a sort key into (property name, descending)."""
    if not sort:
        return None, False
    if sort.startswith("-"):
        return sort[1:], True
    return sort, False


def create_property_store(config: "ServerConfig") -> PropertyStore:
    """Factory function to create a property store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate PropertyStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackend
    from .memory import InMemoryPropertyStore
    from .sqlite import SqlitePropertyStore

    storage = config.storage
    default_limit = storage.default_page_size or None

    if storage.backend == StorageBackend.SQLITE:
        return SqlitePropertyStore(
            data_dir=storage.data_dir,
            db_name=storage.db_name,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
            default_limit=default_limit,
        )
    elif storage.backend == StorageBackend.MEMORY:
        logger.warning("Using in-memory property store; data is lost on exit")
        return InMemoryPropertyStore(default_limit=default_limit)
    else:
        raise ValueError(f"Unsupported storage backend: {storage.backend}")
