"""
Property store abstraction for SimplyPut.

This module provides the backend contract the document layer is written
against, and its implementations:
- SQLite (production; one shared database file)
- In-memory (for testing and local development)

The store knows nothing about documents or tenants. It holds flat lists
of named scalar properties per (storage kind, entity id).

Invariants:
    - put() with an id is a full replace of the property set
    - Missing entities raise NotFoundError, driver failures BackendError
    - Query order is deterministic (sort value, then entity id)

How to change safely:
    - New backends must implement the PropertyStore protocol
    - Run the integration suite against every backend
"""

from .base import (
    Cursor,
    Filter,
    Property,
    PropertyStore,
    QueryIterator,
    Scalar,
    create_property_store,
    is_scalar,
)
from .memory import InMemoryPropertyStore
from .sqlite import SqlitePropertyStore

__all__ = [
    # Protocol and types
    "PropertyStore",
    "Property",
    "Filter",
    "Cursor",
    "QueryIterator",
    "Scalar",
    "is_scalar",
    # Factory
    "create_property_store",
    # Implementations
    "InMemoryPropertyStore",
    "SqlitePropertyStore",
]
