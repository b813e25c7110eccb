"""
API module for the SimplyPut server.

This module provides the external interface:
- HTTP server (JSON over aiohttp)
- Caller identity resolution (OAuth2 userinfo, dev-mode bypass)
- Resource path parsing

Invariants:
    - All operations require a resolved caller identity
    - Errors are returned as JSON with the status from errors.py

How to change safely:
    - Keep paths and status codes stable; clients depend on them
    - Add new identity providers behind the IdentityProvider protocol
"""

from .auth import IdentityProvider, UserInfoIdentityProvider, resolve_identity
from .http_server import HttpServer, create_http_app
from .paths import ResourcePath, parse_resource_path

__all__ = [
    "HttpServer",
    "create_http_app",
    "IdentityProvider",
    "UserInfoIdentityProvider",
    "resolve_identity",
    "ResourcePath",
    "parse_resource_path",
]
