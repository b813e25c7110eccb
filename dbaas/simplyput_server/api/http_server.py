"""
HTTP server implementation for SimplyPut.

A single catch-all route parses the resource path itself, so malformed
paths and unsupported methods get the same JSON error handling as
everything else.

    POST    /{kind}        insert
    GET     /{kind}        list
    GET     /{kind}/{id}   get
    POST    /{kind}/{id}   update (full replace)
    DELETE  /{kind}/{id}   delete
    other                  405

Invariants:
    - Every request resolves a caller identity before touching storage
    - SimplyPutError subclasses map to their own status; anything else is 500
    - Error bodies are {"error": ..., "error_code": ...}

How to change safely:
    - Status codes are part of the API; keep errors.py as the only mapping
    - New routes must still go through identity resolution
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial
from typing import Optional

from aiohttp import web

from ..config import HttpConfig
from ..documents import DocumentService, QuerySpec
from ..errors import SimplyPutError, UnsupportedMethodError
from .auth import IdentityProvider, resolve_identity
from .paths import parse_resource_path

logger = logging.getLogger(__name__)


def create_http_app(
    service: DocumentService,
    identity_provider: Optional[IdentityProvider],
    config: Optional[HttpConfig] = None,
    dev_mode: bool = False,
) -> web.Application:
    """Create an HTTP application for SimplyPut.

    Args:
        service: Document service
        identity_provider: Resolves bearer tokens (may be None in dev mode)
        config: HTTP server configuration
        dev_mode: Accept user_id instead of a bearer token

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"

        return response

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except SimplyPutError as e:
            if e.status >= 500:
                logger.error(
                    f"{request.method} {request.path} failed: {e.message}",
                    exc_info=True,
                    extra={"error_code": e.code, "status": e.status},
                )
            else:
                logger.warning(
                    f"{request.method} {request.path} rejected: {e.message}",
                    extra={"error_code": e.code, "status": e.status},
                )
            return web.json_response(e.to_dict(), status=e.status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    # CORS outermost so error responses carry the headers too
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app.router.add_route(
        "*",
        "/{path:.*}",
        partial(handle_resource, service=service, identity_provider=identity_provider, dev_mode=dev_mode),
    )
    return app


async def handle_resource(
    request: web.Request,
    service: DocumentService,
    identity_provider: Optional[IdentityProvider],
    dev_mode: bool,
) -> web.Response:
    """Dispatch a request to the document operation for its method and path."""
    identity = await resolve_identity(request, identity_provider, dev_mode)
    resource = parse_resource_path(request.path)
    method = request.method

    if resource.is_collection:
        if method == "POST":
            document = await service.insert(identity, resource.kind, await request.read())
            return web.json_response(document)
        if method == "GET":
            spec = QuerySpec.from_params(request.query.items())
            page = await service.list(identity, resource.kind, spec)
            return web.json_response(page.to_dict())
    else:
        if method == "GET":
            document = await service.get(identity, resource.kind, resource.entity_id)
            return web.json_response(document)
        if method == "DELETE":
            await service.delete(identity, resource.kind, resource.entity_id)
            return web.Response()
        if method == "POST":
            # Strictly "replace all properties", not "merge into existing"
            document = await service.update(
                identity, resource.kind, resource.entity_id, await request.read()
            )
            return web.json_response(document)

    raise UnsupportedMethodError(method)


class HttpServer:
    """HTTP server wrapper for SimplyPut.

    This class manages the aiohttp runner lifecycle:
    - Application setup
    - Socket binding
    - Graceful shutdown

    Example:
        >>> server = HttpServer(app, port=8080)
        >>> await server.start()
        >>> # Server is now running
        >>> await server.stop()
    """

    def __init__(
        self,
        app: web.Application,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        """Initialize the HTTP server.

        Args:
            app: Application from create_http_app()
            host: Host to bind to
            port: Port to listen on
        """
        self.app = app
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        """Start serving."""
        if self._runner is not None:
            logger.warning("Server already running")
            return

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(
            f"HTTP server running on http://{self.host}:{self.port}",
            extra={"host": self.host, "port": self.port},
        )

    async def stop(self) -> None:
        """Stop serving and release the socket."""
        if self._runner is None:
            return

        logger.info("Stopping HTTP server")
        await self._runner.cleanup()
        self._runner = None

    @property
    def is_running(self) -> bool:
        """Whether the server is running."""
        return self._runner is not None

