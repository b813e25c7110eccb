"""
Query translation and cursor pagination for document listing.

This module turns list parameters into a QuerySpec, runs it against the
property store and decodes each row into a document.

Parameters:
    limit   integer page size; absent or 0 uses the store default
    sort    property name, "-" prefix for descending
    start   cursor to resume from
    end     cursor to stop at
    where   repeated "key=value" string equality filters, ANDed

Invariants:
    - A cursor token the store cannot decode is ignored, not rejected
    - A failure while iterating discards everything read so far
    - The continuation token is always a valid cursor, even for an empty page

How to change safely:
    - Numeric and range filters need typed where syntax; add it as a new
      parameter rather than changing "where"
    - Never read rows in parallel; cursors are single-pass
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import InvalidCursorError, QueryError
from ..store.base import INT64_MAX, Cursor, Filter, PropertyStore
from .codec import Document, decode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuerySpec:
    """A user's list request.

    Attributes:
        limit: Maximum rows, None for the store default
        sort: Sort property, "-" prefix for descending
        start_cursor: Opaque token to resume from
        end_cursor: Opaque token to stop at
        filters: Equality filters
    """

    limit: Optional[int] = None
    sort: Optional[str] = None
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None
    filters: Tuple[Filter, ...] = ()

    @classmethod
    def from_params(cls, params: Iterable[Tuple[str, str]]) -> QuerySpec:
        """Parse HTTP query pairs.

        Single-valued parameters take their first occurrence; "where" may
        repeat.

        Args:
            params: (name, value) pairs, repeats allowed

        Raises:
            QueryError: If limit, sort or a where clause is malformed
        """
        single: Dict[str, str] = {}
        filters: List[Filter] = []
        for name, value in params:
            if name == "where":
                parts = value.split("=")
                if len(parts) != 2:
                    raise QueryError(f"invalid where: {value}", details={"where": value})
                filters.append(Filter(key=parts[0], value=parts[1]))
            else:
                single.setdefault(name, value)

        limit = None
        raw_limit = single.get("limit", "")
        if raw_limit != "":
            try:
                limit = int(raw_limit)
            except ValueError:
                raise QueryError(f"invalid limit: {raw_limit}", details={"limit": raw_limit})
            if not 0 <= limit <= INT64_MAX:
                raise QueryError(f"invalid limit: {raw_limit}", details={"limit": raw_limit})

        sort = single.get("sort") or None
        if sort == "-":
            raise QueryError("sort must name a property", details={"sort": sort})

        return cls(
            limit=limit or None,
            sort=sort,
            start_cursor=single.get("start") or None,
            end_cursor=single.get("end") or None,
            filters=tuple(filters),
        )


@dataclass
class Page:
    """One page of list results.

    Attributes:
        items: Decoded documents in query order
        continuation: Cursor token to pass as "start" for the next page
    """

    items: List[Document] = field(default_factory=list)
    continuation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON response body."""
        return {"items": self.items, "nextStartToken": self.continuation}


class QueryTranslator:
    """Runs QuerySpecs against a property store.

    Example:
        >>> translator = QueryTranslator(store)
        >>> page = await translator.run("u1--contact", QuerySpec(limit=10))
        >>> next_page = await translator.run(
        ...     "u1--contact", QuerySpec(limit=10, start_cursor=page.continuation)
        ... )
    """

    def __init__(self, store: PropertyStore) -> None:
        self.store = store

    def _bound(self, token: Optional[str]) -> Optional[Cursor]:
        if not token:
            return None
        try:
            return self.store.decode_cursor(token)
        except InvalidCursorError:
            # Unreadable cursors are treated as absent: the list runs
            # without that bound instead of failing.
            logger.debug("Ignoring undecodable cursor", extra={"cursor": token})
            return None

    async def run(self, storage_kind: str, spec: QuerySpec) -> Page:
        """Execute a query and collect one page.

        Args:
            storage_kind: Tenant-qualified kind
            spec: Parsed list request

        Returns:
            Page of decoded documents and the continuation token

        Raises:
            BackendError: If the store fails at any point
        """
        iterator = await self.store.query(
            storage_kind,
            filters=spec.filters,
            sort=spec.sort,
            limit=spec.limit,
            start=self._bound(spec.start_cursor),
            end=self._bound(spec.end_cursor),
        )

        items: List[Document] = []
        cursor = iterator.cursor()
        async for entity_id, properties in iterator:
            items.append(decode(properties, entity_id))
            cursor = iterator.cursor()

        return Page(items=items, continuation=cursor.encode())
