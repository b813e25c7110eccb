"""
SimplyPut Server - Main entry point.

This module starts the SimplyPut server with all components:
- Property store (SQLite or in-memory)
- Identity provider (OAuth2 userinfo; skipped in dev mode)
- HTTP server (JSON document API)

Usage:
    python -m dbaas.simplyput_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The property store is connected before the HTTP server accepts requests
    - Shutdown stops accepting requests before closing the store

How to change safely:
    - Start new components before the HTTP server and stop them after it
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .api import HttpServer, UserInfoIdentityProvider, create_http_app
from .config import ServerConfig
from .documents import DocumentService
from .store import PropertyStore, create_property_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """SimplyPut Server orchestrator.

    Manages the lifecycle of all server components:
    - Property store connection
    - Identity provider session
    - HTTP server

    Attributes:
        config: Server configuration
        store: Property store instance
        identity_provider: Token resolver (None in dev mode)
        service: Document service
        http_server: HTTP server

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: PropertyStore | None = None
        self.identity_provider: UserInfoIdentityProvider | None = None
        self.service: DocumentService | None = None
        self.http_server: HttpServer | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SimplyPut server")
        self.config.log_config()

        try:
            self.store = create_property_store(self.config)
            await self.store.connect()
            logger.info("Property store connected")

            if not self.config.auth.dev_mode:
                self.identity_provider = UserInfoIdentityProvider(
                    userinfo_url=self.config.auth.userinfo_url,
                    timeout_seconds=self.config.auth.timeout_seconds,
                )
                await self.identity_provider.start()

            self.service = DocumentService(self.store)

            app = create_http_app(
                self.service,
                self.identity_provider,
                config=self.config.http,
                dev_mode=self.config.auth.dev_mode,
            )
            self.http_server = HttpServer(
                app,
                host=self.config.http.host,
                port=self.config.http.port,
            )
            await self.http_server.start()

            self._running = True
            logger.info("SimplyPut server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running and self.store is None:
            return

        logger.info("Stopping SimplyPut server")

        if self.http_server:
            await self.http_server.stop()
            self.http_server = None

        if self.identity_provider:
            await self.identity_provider.close()
            self.identity_provider = None

        if self.store:
            await self.store.close()
            self.store = None

        self._running = False
        logger.info("SimplyPut server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create server
    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
