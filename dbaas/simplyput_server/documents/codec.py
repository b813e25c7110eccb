"""
Document codec: nested JSON documents to flat property lists and back.

A document is flattened by joining nested keys with "." and turning each
array element into its own property flagged ``multiple``:

    {"name": "Alice", "tags": ["a", "b"], "address": {"city": "X"}}

    Property("name", "Alice")
    Property("tags", "a", multiple=True)
    Property("tags", "b", multiple=True)
    Property("address.city", "X")

Invariants:
    - decode(encode(d), id) == d plus {"_id": id} when no array in d has
      exactly one element; a one-element array decodes as a bare scalar
    - An empty array encodes to nothing and decodes as an absent field
    - decode never raises; properties that collide with an already-decoded
      scalar are dropped

How to change safely:
    - Stored data outlives this module; never change how existing property
      names are split
    - Fixing the one-element array ambiguity needs a stored type tag and a
      migration, not a codec tweak
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence, Union

from ..errors import EncodingError
from ..store.base import Property, Scalar, is_scalar

logger = logging.getLogger(__name__)

Value = Union[Scalar, List["Value"], Dict[str, "Value"]]
Document = Dict[str, Value]

ID_KEY = "_id"
CREATED_KEY = "_created"
UPDATED_KEY = "_updated"
KIND_KEY = "_kind"

PATH_SEPARATOR = "."


def encode(document: Document, prefix: str = "") -> List[Property]:
    """Flatten a document into properties.

    Args:
        document: Document to flatten
        prefix: Dotted path of the document within its parent

    Returns:
        Properties in document iteration order

    Raises:
        EncodingError: If a value cannot be stored
    """
    properties: List[Property] = []
    for key, value in document.items():
        name = prefix + key
        if isinstance(value, dict):
            properties.extend(encode(value, name + PATH_SEPARATOR))
        elif isinstance(value, list):
            _encode_elements(name, value, properties)
        else:
            properties.append(Property(name=name, value=_scalar(name, value)))
    return properties


def _encode_elements(name: str, values: List[Value], properties: List[Property]) -> None:
    for value in values:
        if isinstance(value, list):
            # Only one level of repetition exists in the store
            _encode_elements(name, value, properties)
        elif isinstance(value, dict):
            raise EncodingError(
                f"Cannot store an object inside array '{name}'",
                details={"property": name},
            )
        else:
            properties.append(Property(name=name, value=_scalar(name, value), multiple=True))


def _scalar(name: str, value: Any) -> Scalar:
    if not is_scalar(value):
        raise EncodingError(
            f"Cannot store value of type {type(value).__name__} in '{name}'",
            details={"property": name},
        )
    return value


def decode(properties: Sequence[Property], entity_id: int) -> Document:
    """Rebuild a document from properties.

    Repeated names collect into arrays in the order the store returned
    them. The result always carries ``_id``.

    Args:
        properties: Properties as read from the store
        entity_id: Identifier to set as ``_id``

    Returns:
        Decoded document
    """
    document: Document = {}
    for prop in properties:
        *parents, leaf = prop.name.split(PATH_SEPARATOR)

        node = _descend(document, parents)
        if node is None:
            # Conflict: a parent path already holds a non-object value.
            # Keep what is there and drop this property.
            logger.debug(
                "Dropped property under a non-object value",
                extra={"property": prop.name, "entity_id": entity_id},
            )
            continue

        if not _set_leaf(node, leaf, prop.value):
            # Conflict: the leaf is already an object. Same policy as above.
            logger.debug(
                "Dropped property shadowed by an object",
                extra={"property": prop.name, "entity_id": entity_id},
            )

    document[ID_KEY] = entity_id
    return document


def _descend(node: Document, segments: List[str]) -> Union[Document, None]:
    for segment in segments:
        if segment not in node:
            child: Document = {}
            node[segment] = child
            node = child
            continue
        existing = node[segment]
        if not isinstance(existing, dict):
            return None
        node = existing
    return node


def _set_leaf(node: Document, leaf: str, value: Scalar) -> bool:
    if leaf not in node:
        node[leaf] = value
        return True

    existing = node[leaf]
    if isinstance(existing, list):
        existing.append(value)
    elif isinstance(existing, dict):
        return False
    else:
        node[leaf] = [existing, value]
    return True


def _reject_constant(name: str) -> None:
    raise EncodingError(f"Invalid JSON constant: {name}")


def parse_document(body: Union[bytes, str]) -> Document:
    """Parse a request body into a document.

    Raises:
        EncodingError: If the body is not a JSON object
    """
    try:
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        document = json.loads(body, parse_constant=_reject_constant)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"decoding json: {e}")
        raise EncodingError(f"Invalid JSON body: {e}") from e

    if not isinstance(document, dict):
        raise EncodingError(
            f"JSON body must be an object, not {type(document).__name__}",
        )
    return document
