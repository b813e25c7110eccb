"""
SimplyPut Test Suite.

This package contains:
- unit/: Unit tests (no network, no server; stores on temp directories)
- integration/: Integration tests (document service and HTTP stack over
  real stores)
"""
