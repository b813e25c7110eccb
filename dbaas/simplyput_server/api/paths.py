"""
Resource addressing.

    /{kind}        collection
    /{kind}/{id}   single entity, id a positive base-10 int64
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..errors import PathError
from ..store.base import INT64_MAX


@dataclass(frozen=True)
class ResourcePath:
    """Parsed request path."""

    kind: str
    entity_id: Optional[int] = None

    @property
    def is_collection(self) -> bool:
        return self.entity_id is None


def parse_resource_path(path: str) -> ResourcePath:
    """Parse the kind and id from a request path.

    Raises:
        PathError: If the path is not /{kind} or /{kind}/{id}
    """
    if not path.startswith("/") or path == "/":
        raise PathError("invalid path", path=path)

    parts = path[1:].split("/")
    if len(parts) > 2 or not parts[0]:
        raise PathError("invalid path", path=path)

    if len(parts) == 1:
        return ResourcePath(kind=parts[0])

    raw_id = parts[1]
    if not (raw_id.isascii() and raw_id.isdigit()):
        raise PathError(f"invalid id: {raw_id!r}", path=path)
    entity_id = int(raw_id)
    if not 0 < entity_id <= INT64_MAX:
        raise PathError(f"id out of range: {raw_id}", path=path)

    return ResourcePath(kind=parts[0], entity_id=entity_id)
