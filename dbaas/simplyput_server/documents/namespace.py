"""
Tenant isolation for storage kinds.

Every caller's documents live in the shared property store under a
storage kind qualified by the caller's identity, so two callers using the
same logical kind and id never see each other's entities.

The identity must already be resolved (see api/auth.py); nothing here
authenticates.

Known limitation: a logical kind or identity containing the separator can
collide with another pair (``"a--b" + "c"`` vs ``"a" + "b--c"``).
"""

from __future__ import annotations

SEPARATOR = "--"


def storage_kind(identity: str, logical_kind: str) -> str:
    """Tenant-qualified storage kind for a logical kind."""
    return f"{identity}{SEPARATOR}{logical_kind}"
