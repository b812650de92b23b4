"""
Configuration management for the global state service.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The remote owner is fixed at startup and never changes in-process
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
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class EngineKind(Enum):
    """Supported local storage engines."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class LogFormat(Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


@dataclass(frozen=True)
class GlobalStateConfig:
    """Ownership configuration for the global state keyspace.

    Attributes:
        remote_node: Base URL of the owning node (e.g. http://owner:17001).
            Empty means this node owns the data locally.
        shared_secret: Secret sent to (and required from) peers as the
            shared_secret query parameter
        remote_timeout_seconds: Deadline for one remote call; 0 disables it
    """

    remote_node: str = ""
    shared_secret: str = ""
    remote_timeout_seconds: float = 30.0

    @property
    def is_remote(self) -> bool:
        """Whether operations are forwarded to a remote owner."""
        return self.remote_node != ""

    @classmethod
    def from_env(cls) -> GlobalStateConfig:
        """Load configuration from environment variables."""
        return cls(
            remote_node=os.getenv("GLOBAL_STATE_REMOTE_NODE", "").strip().rstrip("/"),
            shared_secret=os.getenv("GLOBAL_STATE_SHARED_SECRET", ""),
            remote_timeout_seconds=float(os.getenv("GLOBAL_STATE_REMOTE_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_file: Database file name inside data_dir
        engine: Which engine to open
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/globalstate"
    db_file: str = "global_state.db"
    engine: EngineKind = EngineKind.SQLITE
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @property
    def db_path(self) -> str:
        """Full path of the SQLite database file."""
        return str(Path(self.data_dir) / self.db_file)

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        engine_str = os.getenv("STORAGE_ENGINE", "sqlite").lower()
        try:
            engine = EngineKind(engine_str)
        except ValueError:
            raise ValueError(f"Invalid STORAGE_ENGINE '{engine_str}'. Must be one of: sqlite, memory")

        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/globalstate"),
            db_file=os.getenv("GLOBAL_STATE_DB_FILE", "global_state.db"),
            engine=engine,
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        max_request_body_bytes: Largest accepted request body
        cors_origins: Allowed CORS origins ("*" allows any)
    """

    host: str = "0.0.0.0"
    port: int = 17001
    max_request_body_bytes: int = 20 * 1024 * 1024  # 20MB
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "17001")),
            max_request_body_bytes=int(
                os.getenv("MAX_REQUEST_BODY_BYTES", str(20 * 1024 * 1024))
            ),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.JSON

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        format_str = os.getenv("LOG_FORMAT", "json").lower()
        try:
            log_format = LogFormat(format_str)
        except ValueError:
            raise ValueError(f"Invalid LOG_FORMAT '{format_str}'. Must be one of: json, text")
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=log_format,
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        global_state: Ownership configuration (local or remote owner)
        storage: Local storage configuration (unused when remote)
        http: HTTP server configuration
        observability: Logging configuration
    """

    global_state: GlobalStateConfig = field(default_factory=GlobalStateConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
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
            global_state=GlobalStateConfig.from_env(),
            storage=StorageConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        gs = self.global_state
        if gs.is_remote:
            parsed = urlparse(gs.remote_node)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(
                    "GLOBAL_STATE_REMOTE_NODE must be an http(s) URL, "
                    f"got '{gs.remote_node}'"
                )
            if not gs.shared_secret:
                raise ValueError(
                    "GLOBAL_STATE_SHARED_SECRET is required when GLOBAL_STATE_REMOTE_NODE is set"
                )
        if gs.remote_timeout_seconds < 0:
            raise ValueError("GLOBAL_STATE_REMOTE_TIMEOUT_SECONDS must be >= 0")

        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")
        if self.http.max_request_body_bytes <= 0:
            raise ValueError("MAX_REQUEST_BODY_BYTES must be positive")

        if not gs.is_remote and self.storage.engine == EngineKind.SQLITE:
            if not os.path.exists(self.storage.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.storage.data_dir}. "
                    "It will be created on startup."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        gs = self.global_state
        logger.info(
            "Server configuration loaded",
            extra={
                "mode": "remote" if gs.is_remote else "local",
                "remote_node": gs.remote_node or None,
                "shared_secret_set": bool(gs.shared_secret),
                "remote_timeout_seconds": gs.remote_timeout_seconds,
                "storage_engine": self.storage.engine.value if not gs.is_remote else None,
                "db_path": self.storage.db_path if not gs.is_remote else None,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
