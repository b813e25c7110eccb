"""
Document operations: insert, get, update, delete and list.

Each operation namespaces the logical kind by caller identity, runs the
codec, and makes one or two property store calls. There is no locking and
no version check; concurrent updates to the same id are last-write-wins.
update checks existence and writes in two store calls, so a delete that
lands between them is overwritten and the entity reappears under its old
id.

Lifecycle:
    absent --insert--> present --update--> present --delete--> absent

    Re-inserting after delete allocates a new id.

Invariants:
    - update replaces the whole property set; omitted fields disappear
    - _created is stamped once at insert and carried over by update from
      the stored entity, never from the request body
    - _id, _created and _kind in a request body are ignored
    - _kind is added to responses and never stored
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence, Union

from ..store.base import Property, PropertyStore
from .codec import (
    CREATED_KEY,
    ID_KEY,
    KIND_KEY,
    UPDATED_KEY,
    Document,
    decode,
    encode,
    parse_document,
)
from .namespace import storage_kind
from .query import Page, QuerySpec, QueryTranslator

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

Body = Union[bytes, str]


def _stored_created(properties: Sequence[Property]) -> Optional[int]:
    for prop in properties:
        if prop.name == CREATED_KEY:
            return prop.value
    return None


class DocumentService:
    """Orchestrates document CRUD over a property store.

    Attributes:
        store: Backend property store
        clock: Returns the current time in epoch seconds
        translator: Query translator used by list

    Example:
        >>> service = DocumentService(store)
        >>> doc = await service.insert("u1", "contact", b'{"name": "Alice"}')
        >>> await service.get("u1", "contact", doc["_id"])
        {'name': 'Alice', '_created': 1700000000, '_id': 1, '_kind': 'contact'}
    """

    def __init__(self, store: PropertyStore, clock: Clock = time.time) -> None:
        self.store = store
        self.clock = clock
        self.translator = QueryTranslator(store)

    def _now(self) -> int:
        return int(self.clock())

    async def insert(self, identity: str, logical_kind: str, body: Body) -> Document:
        """Create a document.

        Returns:
            The stored document with _id and _created

        Raises:
            EncodingError: If the body cannot be parsed or stored
            BackendError: If the write fails
        """
        document = parse_document(body)
        document.pop(ID_KEY, None)
        document.pop(KIND_KEY, None)
        document[CREATED_KEY] = self._now()

        kind = storage_kind(identity, logical_kind)
        entity_id = await self.store.put(kind, None, encode(document))

        logger.info(
            "Inserted document",
            extra={"storage_kind": kind, "entity_id": entity_id},
        )

        document[ID_KEY] = entity_id
        document[KIND_KEY] = logical_kind
        return document

    async def get(self, identity: str, logical_kind: str, entity_id: int) -> Document:
        """Read a document.

        Raises:
            NotFoundError: If no such document exists for this caller
        """
        kind = storage_kind(identity, logical_kind)
        document = decode(await self.store.get(kind, entity_id), entity_id)
        document[KIND_KEY] = logical_kind
        return document

    async def update(
        self,
        identity: str,
        logical_kind: str,
        entity_id: int,
        body: Body,
    ) -> Document:
        """Replace a document's fields.

        Returns:
            The stored document with _id, _created and _updated

        Raises:
            EncodingError: If the body cannot be parsed or stored
            NotFoundError: If no such document exists for this caller
        """
        document = parse_document(body)
        for key in (ID_KEY, CREATED_KEY, KIND_KEY):
            document.pop(key, None)

        kind = storage_kind(identity, logical_kind)
        created = _stored_created(await self.store.get(kind, entity_id))
        if created is not None:
            document[CREATED_KEY] = created
        document[UPDATED_KEY] = self._now()

        await self.store.put(kind, entity_id, encode(document))

        logger.info(
            "Updated document",
            extra={"storage_kind": kind, "entity_id": entity_id},
        )

        document[ID_KEY] = entity_id
        document[KIND_KEY] = logical_kind
        return document

    async def delete(self, identity: str, logical_kind: str, entity_id: int) -> None:
        """Delete a document.

        Raises:
            NotFoundError: If no such document exists for this caller
        """
        kind = storage_kind(identity, logical_kind)
        await self.store.delete(kind, entity_id)

        logger.info(
            "Deleted document",
            extra={"storage_kind": kind, "entity_id": entity_id},
        )

    async def list(self, identity: str, logical_kind: str, spec: QuerySpec) -> Page:
        """List documents matching a query, one page at a time."""
        page = await self.translator.run(storage_kind(identity, logical_kind), spec)
        for item in page.items:
            item[KIND_KEY] = logical_kind
        return page
