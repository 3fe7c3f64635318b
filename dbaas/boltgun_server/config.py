"""
Configuration management for Boltgun Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development, except
      the credentials file, which must always be provided
    - Credentials and tokens are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name} '{raw}'. Must be an integer")


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind the HTTP server
        port: TCP port to listen on
        client_max_size: Maximum accepted request body size in bytes
    """

    host: str = "0.0.0.0"
    port: int = 8080
    client_max_size: int = 1024 * 1024  # 1MB

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=_env_int("HTTP_PORT", 8080),
            client_max_size=_env_int("HTTP_CLIENT_MAX_SIZE", 1024 * 1024),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Store file configuration.

    Attributes:
        db_path: Location of the store file
        file_mode: Permission bits used when creating the store file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: How long a writer waits for the write lock
    """

    db_path: str = "boltgun.db"
    file_mode: int = 0o600
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        raw_mode = os.getenv("DB_FILE_MODE", "600")
        try:
            file_mode = int(raw_mode, 8)
        except ValueError:
            raise ValueError(f"Invalid DB_FILE_MODE '{raw_mode}'. Must be octal, e.g. 600")

        return cls(
            db_path=os.getenv("DB_PATH", "boltgun.db"),
            file_mode=file_mode,
            wal_mode=_env_bool("SQLITE_WAL_MODE", True),
            busy_timeout_ms=_env_int("SQLITE_BUSY_TIMEOUT_MS", 5000),
        )


@dataclass(frozen=True)
class CredentialsConfig:
    """Bootstrap credentials configuration.

    Attributes:
        credentials_file: JSON array of {username, password} objects
    """

    credentials_file: str = ""

    @classmethod
    def from_env(cls) -> CredentialsConfig:
        """Load configuration from environment variables."""
        return cls(credentials_file=os.getenv("CREDENTIALS_FILE", ""))


@dataclass(frozen=True)
class BackupConfig:
    """Backup scheduler configuration.

    Attributes:
        path: Backup file location; empty disables backups
        interval_seconds: Interval between backups
    """

    path: str = ""
    interval_seconds: int = 120  # 2 minutes

    @property
    def enabled(self) -> bool:
        return bool(self.path)

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("BACKUP_PATH", ""),
            interval_seconds=_env_int("BACKUP_INTERVAL_SECONDS", 120),
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
        storage: Store file configuration
        credentials: Bootstrap credentials configuration
        backup: Backup scheduler configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
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
            credentials=CredentialsConfig.from_env(),
            backup=BackupConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.credentials.credentials_file:
            raise ValueError("CREDENTIALS_FILE is required")

        if not self.storage.db_path:
            raise ValueError("DB_PATH must not be empty")

        if not 0 < self.http.port < 65536:
            raise ValueError(f"Invalid HTTP_PORT {self.http.port}. Must be 1-65535")

        if self.backup.enabled and self.backup.interval_seconds <= 0:
            raise ValueError("BACKUP_INTERVAL_SECONDS must be positive when BACKUP_PATH is set")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.backup.enabled and os.path.abspath(self.backup.path) == os.path.abspath(
            self.storage.db_path
        ):
            raise ValueError("BACKUP_PATH must differ from DB_PATH")

    def log_config(self) -> None:
        """Log configuration (without credentials)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_host": self.http.host,
                "http_port": self.http.port,
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "credentials_file": self.credentials.credentials_file,
                "backup_enabled": self.backup.enabled,
                "backup_path": self.backup.path or None,
                "backup_interval_seconds": self.backup.interval_seconds,
                "log_level": self.observability.log_level,
            },
        )
