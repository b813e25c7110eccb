"""
Error types for the SimplyPut server.

Every failure a request can hit is one of these types. Each carries the
HTTP status it maps to, so the HTTP layer needs a single translation point:

- SimplyPutError: Base exception
- AuthError: Missing or unresolvable caller identity (401)
- PathError: Malformed resource address (400)
- QueryError: Malformed list parameters (400)
- InvalidCursorError: Undecodable cursor token (never surfaced, see query.py)
- NotFoundError: Entity absent (404)
- UnsupportedMethodError: Method not allowed at this path shape (405)
- EncodingError: Malformed body or unrepresentable value (500)
- BackendError: Property store failure (500)

Invariants:
    - All errors inherit from SimplyPutError
    - Errors are terminal for the request; nothing retries
    - Messages never include credentials

How to change safely:
    - Status codes are part of the public API; change them only with a
      version bump
    - EncodingError maps to 500 and must keep doing so until clients are
      told otherwise
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SimplyPutError(Exception):
    """Base exception for all SimplyPut errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        status: HTTP status the error maps to
    """

    status = 500
    default_code = "INTERNAL"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON error body."""
        return {"error": self.message, "error_code": self.code}


class AuthError(SimplyPutError):
    """Caller identity is missing or could not be resolved.

    Raised when:
    - No bearer token (or dev-mode user_id) was supplied
    - The identity provider rejected the token
    """

    status = 401
    default_code = "UNAUTHORIZED"


class PathError(SimplyPutError):
    """Request path is not a valid resource address."""

    status = 400
    default_code = "INVALID_PATH"

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path


class QueryError(SimplyPutError):
    """List parameters are malformed.

    Raised when:
    - limit is not an integer, or is negative or beyond int64
    - a where clause is not of the form key=value
    - sort names no property
    """

    status = 400
    default_code = "INVALID_QUERY"


class InvalidCursorError(QueryError):
    """Cursor token could not be decoded by the store."""

    default_code = "INVALID_CURSOR"


class NotFoundError(SimplyPutError):
    """Entity does not exist in the storage kind."""

    status = 404
    default_code = "NOT_FOUND"

    def __init__(self, storage_kind: str, entity_id: int) -> None:
        super().__init__(
            f"No entity {entity_id} in {storage_kind}",
            details={"storage_kind": storage_kind, "entity_id": entity_id},
        )
        self.storage_kind = storage_kind
        self.entity_id = entity_id


class UnsupportedMethodError(SimplyPutError):
    """HTTP method is not supported at this path shape."""

    status = 405
    default_code = "UNSUPPORTED_METHOD"

    def __init__(self, method: str) -> None:
        super().__init__("Unsupported Method", details={"method": method})
        self.method = method


class EncodingError(SimplyPutError):
    """Body is not a JSON object, or holds a value the store cannot represent."""

    status = 500
    default_code = "ENCODING_ERROR"


class BackendError(SimplyPutError):
    """Property store (or identity provider transport) failed."""

    status = 500
    default_code = "BACKEND_ERROR"
