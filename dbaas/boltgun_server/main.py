"""
Boltgun Server - Main entry point.

This module starts the Boltgun server with all components:
- Bucket store (SQLite file)
- Credential provisioning (bootstrap file -> registry bucket)
- HTTP server (authenticate/update/retrieve/remove)
- Backup scheduler loop (store -> backup file)

Usage:
    python -m dbaas.boltgun_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Tokens are provisioned before the HTTP server accepts requests
    - The backup loop starts after the HTTP server is listening
    - Shutdown order: backup loop -> HTTP server -> store
    - Any startup failure exits before serving traffic

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import BucketService, create_http_app
from .auth import (
    Authenticator,
    CredentialFileError,
    CredentialRegistry,
    ProvisioningError,
    load_credentials,
)
from .config import ServerConfig
from .snapshot import BackupScheduler
from .store import BucketStore, StoreError

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
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
    """Boltgun Server orchestrator.

    Manages the lifecycle of all server components:
    - Bucket store
    - HTTP server
    - Backup scheduler

    Attributes:
        config: Server configuration
        store: Bucket store shared by handlers and backups
        service: Bucket operation handlers
        scheduler: Backup scheduler (None when backups are disabled)

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
        self.store: BucketStore | None = None
        self.service: BucketService | None = None
        self.scheduler: BackupScheduler | None = None
        self._runner: web.AppRunner | None = None

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Boltgun server")
        self.config.log_config()

        try:
            self.store = BucketStore(
                self.config.storage.db_path,
                mode=self.config.storage.file_mode,
                wal_mode=self.config.storage.wal_mode,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
            )
            self.store.open()

            credentials = load_credentials(self.config.credentials.credentials_file)
            registry = CredentialRegistry(self.store)
            await asyncio.to_thread(registry.provision, credentials)

            self.service = BucketService(self.store, Authenticator(registry.bucket_name))

            if self.config.backup.enabled:
                self.scheduler = BackupScheduler(
                    self.store,
                    self.config.backup.path,
                    interval_seconds=self.config.backup.interval_seconds,
                )
            else:
                logger.info("Backups disabled (BACKUP_PATH is empty)")

            app = create_http_app(self.service, self.scheduler, self.config.http)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()
            logger.info(
                f"HTTP server running on http://{self.config.http.host}:{self.config.http.port}"
            )

            if self.scheduler:
                self._tasks.append(asyncio.create_task(self.scheduler.start()))

            self._running = True
            logger.info("Boltgun server started successfully")

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

        # Wait for shutdown signal
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        logger.info("Stopping Boltgun server")

        # Stop the backup loop before anything it depends on
        if self.scheduler:
            await self.scheduler.stop()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        # Drains in-flight requests
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        # Waits for in-flight transactions
        if self.store and self.store.is_open:
            await asyncio.to_thread(self.store.close)

        self._running = False
        logger.info("Boltgun server stopped")

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
    exit_code = 0
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    except (CredentialFileError, ProvisioningError, StoreError, OSError) as e:
        logger.critical(f"Fatal startup error: {e}")
        exit_code = 1
    finally:
        loop.run_until_complete(server.stop())
        loop.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
