"""
SimplyPut Server - JSON document storage over a property store.

Callers POST arbitrary JSON documents and get them back by id. Documents
are stored as flat, typed, possibly repeated properties in a shared
property store, namespaced per caller.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│  DocumentService│
    │             │     │ (aiohttp)   │     │                 │
    └─────────────┘     └──────┬──────┘     └────────┬────────┘
                               │                     │
                               ▼                     ▼
                        ┌─────────────┐     ┌─────────────────┐
                        │  Identity   │     │ Codec / Query   │
                        │  provider   │     │  translator     │
                        └─────────────┘     └────────┬────────┘
                                                     │
                                                     ▼
                                            ┌─────────────────┐
                                            │ Property store  │
                                            │ (SQLite/memory) │
                                            └─────────────────┘

Invariants:
    - Every entity lives under "{identity}--{kind}"; callers never see
      each other's data
    - Entity ids are assigned by the store once and never reused
    - Updates replace the whole document

How to change safely:
    - Property names already stored must keep decoding the same way
    - Cursor tokens held by clients must keep decoding

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
