"""
Document layer for SimplyPut.

This module maps schema-less JSON documents onto the property store:
- Codec: nested document <-> flat dotted-path properties
- Namespacer: per-tenant storage kinds
- Query translator: list parameters, filters, sort and cursors
- DocumentService: insert, get, update, delete and list

Invariants:
    - Documents are never stored as blobs; every scalar is a property
    - All operations are scoped to the caller's storage kind

How to change safely:
    - Codec changes affect data already stored; keep decode compatible
    - Add new metadata keys with a leading underscore
"""

from .codec import (
    CREATED_KEY,
    ID_KEY,
    KIND_KEY,
    UPDATED_KEY,
    Document,
    Value,
    decode,
    encode,
    parse_document,
)
from .namespace import storage_kind
from .query import Page, QuerySpec, QueryTranslator
from .service import DocumentService

__all__ = [
    "Document",
    "Value",
    "encode",
    "decode",
    "parse_document",
    "ID_KEY",
    "CREATED_KEY",
    "UPDATED_KEY",
    "KIND_KEY",
    "storage_kind",
    "QuerySpec",
    "QueryTranslator",
    "Page",
    "DocumentService",
]
