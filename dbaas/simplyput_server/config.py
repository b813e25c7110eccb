"""
Configuration management for the SimplyPut server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST leave DEV_MODE off
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class StorageBackend(Enum):
    """Supported property store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Host to bind to
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" for any)
    """

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Property store configuration.

    Attributes:
        backend: Which property store to use
        data_dir: Directory for the SQLite database
        db_name: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
        default_page_size: Rows per list call when no limit is given (0 = unbounded)
    """

    backend: StorageBackend = StorageBackend.SQLITE
    data_dir: str = "/var/lib/simplyput"
    db_name: str = "simplyput.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB
    default_page_size: int = 0

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If STORAGE_BACKEND is not a known backend
        """
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/simplyput"),
            db_name=os.getenv("SQLITE_DB_NAME", "simplyput.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
            default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "0")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Caller identity configuration.

    Attributes:
        dev_mode: Accept a user_id parameter instead of a bearer token
        userinfo_url: OAuth2 userinfo endpoint that resolves access tokens
        timeout_seconds: Timeout for userinfo requests
    """

    dev_mode: bool = False
    userinfo_url: str = "https://www.googleapis.com/oauth2/v1/userinfo"
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables."""
        return cls(
            dev_mode=_env_bool("DEV_MODE", "false"),
            userinfo_url=os.getenv(
                "USERINFO_URL", "https://www.googleapis.com/oauth2/v1/userinfo"
            ),
            timeout_seconds=float(os.getenv("AUTH_TIMEOUT_SECONDS", "10")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        http: HTTP server configuration
        storage: Property store configuration
        auth: Identity configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            auth=AuthConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

        if self.storage.default_page_size < 0:
            raise ValueError("DEFAULT_PAGE_SIZE must not be negative")

        if self.storage.backend == StorageBackend.SQLITE and not self.storage.data_dir:
            raise ValueError("DATA_DIR is required when STORAGE_BACKEND=sqlite")

        if not self.auth.dev_mode and not self.auth.userinfo_url:
            raise ValueError("USERINFO_URL is required unless DEV_MODE is enabled")

        if self.auth.dev_mode:
            logger.warning("DEV_MODE enabled: user_id parameter bypasses authentication")

        if self.storage.backend == StorageBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "storage_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "default_page_size": self.storage.default_page_size,
                "dev_mode": self.auth.dev_mode,
                "userinfo_url": self.auth.userinfo_url,
                "log_level": self.observability.log_level,
            },
        )
