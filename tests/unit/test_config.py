"""
Unit tests for environment-based server configuration.
"""

import pytest

from dbaas.boltgun_server.config import (
    BackupConfig,
    CredentialsConfig,
    HttpConfig,
    ServerConfig,
    StorageConfig,
)

ENV_VARS = [
    "HTTP_HOST",
    "HTTP_PORT",
    "HTTP_CLIENT_MAX_SIZE",
    "DB_PATH",
    "DB_FILE_MODE",
    "SQLITE_WAL_MODE",
    "SQLITE_BUSY_TIMEOUT_MS",
    "CREDENTIALS_FILE",
    "BACKUP_PATH",
    "BACKUP_INTERVAL_SECONDS",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


class TestServerConfig:
    """Tests for ServerConfig.from_env."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self, monkeypatch):
        """Only CREDENTIALS_FILE is needed."""
        monkeypatch.setenv("CREDENTIALS_FILE", "clients.json")

        config = ServerConfig.from_env()

        assert config.http == HttpConfig()
        assert config.storage.db_path == "boltgun.db"
        assert config.storage.file_mode == 0o600
        assert config.storage.wal_mode is True
        assert config.credentials.credentials_file == "clients.json"
        assert config.backup.enabled is False
        assert config.backup.interval_seconds == 120
        assert config.observability.log_format == "json"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_FILE", "/etc/boltgun/clients.json")
        monkeypatch.setenv("HTTP_HOST", "127.0.0.1")
        monkeypatch.setenv("HTTP_PORT", "9090")
        monkeypatch.setenv("DB_PATH", "/var/lib/boltgun/store.db")
        monkeypatch.setenv("DB_FILE_MODE", "640")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("BACKUP_PATH", "/var/backups/store.db")
        monkeypatch.setenv("BACKUP_INTERVAL_SECONDS", "30")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.http.host == "127.0.0.1"
        assert config.http.port == 9090
        assert config.storage.db_path == "/var/lib/boltgun/store.db"
        assert config.storage.file_mode == 0o640
        assert config.storage.wal_mode is False
        assert config.backup.enabled is True
        assert config.backup.interval_seconds == 30
        assert config.observability.log_format == "text"

    def test_credentials_file_required(self):
        with pytest.raises(ValueError, match="CREDENTIALS_FILE"):
            ServerConfig.from_env()

    @pytest.mark.parametrize(
        "name,value,match",
        [
            ("HTTP_PORT", "http", "HTTP_PORT"),
            ("HTTP_PORT", "70000", "HTTP_PORT"),
            ("DB_FILE_MODE", "rw", "DB_FILE_MODE"),
            ("DB_PATH", "", "DB_PATH"),
            ("LOG_FORMAT", "xml", "LOG_FORMAT"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value, match):
        monkeypatch.setenv("CREDENTIALS_FILE", "clients.json")
        monkeypatch.setenv(name, value)

        with pytest.raises(ValueError, match=match):
            ServerConfig.from_env()

    def test_backup_interval_must_be_positive(self):
        config = ServerConfig(
            credentials=CredentialsConfig("clients.json"),
            backup=BackupConfig(path="backup.db", interval_seconds=0),
        )
        with pytest.raises(ValueError, match="BACKUP_INTERVAL_SECONDS"):
            config.validate()

    def test_backup_path_must_differ_from_store(self):
        config = ServerConfig(
            storage=StorageConfig(db_path="boltgun.db"),
            credentials=CredentialsConfig("clients.json"),
            backup=BackupConfig(path="./boltgun.db"),
        )
        with pytest.raises(ValueError, match="BACKUP_PATH"):
            config.validate()
