"""
Periodic store backups for Boltgun.

The BackupScheduler runs as a background loop that, once per interval,
copies the whole store into a single backup file:

    <backup_path>        full SQLite copy of the store, mode 0600

The copy is taken inside a read transaction, so client reads and writes
keep running while it is written. The file is replaced atomically; readers
of the backup path see either the previous copy or the new one.

Invariants:
    - A failed backup is logged and counted, never raised
    - A failed backup does not stop the next tick
    - The loop is cancelled before the store is closed

How to change safely:
    - Keep the backup a plain store file so BucketStore can open it
    - Test cancellation in the middle of a backup
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..store import BucketStore

logger = logging.getLogger(__name__)


@dataclass
class BackupInfo:
    """Information about a completed backup.

    Attributes:
        path: Backup file location
        backup_ts: When the backup finished (Unix ms)
        size_bytes: Size of the backup file
        checksum: SHA-256 of the backup file
    """

    path: str
    backup_ts: int
    size_bytes: int
    checksum: str


class BackupScheduler:
    """Writes a full store backup on a fixed interval.

    Attributes:
        store: BucketStore to back up
        backup_path: Backup file location
        interval_seconds: Interval between backups

    Example:
        >>> scheduler = BackupScheduler(store, "/var/backups/boltgun.db")
        >>> task = asyncio.create_task(scheduler.start())  # Runs until stopped
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        store: BucketStore,
        backup_path: str | Path,
        interval_seconds: float = 120,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: BucketStore instance
            backup_path: Backup file location (created or overwritten)
            interval_seconds: Interval between backups
        """
        self.store = store
        self.backup_path = Path(backup_path)
        self.interval_seconds = interval_seconds

        self._running = False
        self._task: asyncio.Task | None = None
        self._backup_count = 0
        self._failure_count = 0
        self._last_backup_ts: int | None = None

    async def start(self) -> None:
        """Run the backup loop until stopped or cancelled."""
        if self._running:
            logger.warning("Backup scheduler already running")
            return

        self._running = True
        self._task = asyncio.current_task()
        logger.info(
            "Starting backup scheduler",
            extra={
                "backup_path": str(self.backup_path),
                "interval_seconds": self.interval_seconds,
            },
        )

        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                await self.backup_now()
        except asyncio.CancelledError:
            logger.info("Backup scheduler cancelled")
        finally:
            self._running = False
            self._task = None

    async def stop(self) -> None:
        """Stop the loop and wait for its task to end.

        A backup already running in a worker thread is abandoned, not awaited;
        it keeps its read transaction until done, so BucketStore.close() still
        waits for it.
        """
        self._running = False
        task = self._task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Stopped backup scheduler")

    async def backup_now(self) -> BackupInfo | None:
        """Write one backup immediately.

        Returns:
            BackupInfo if the backup succeeded, None otherwise
        """
        try:
            size_bytes = await asyncio.to_thread(self.store.backup_to, self.backup_path)
            checksum = await asyncio.to_thread(self._compute_checksum, self.backup_path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failure_count += 1
            logger.error(
                f"Backup to {self.backup_path} failed: {e}",
                exc_info=True,
                extra={"failure_count": self._failure_count},
            )
            return None

        info = BackupInfo(
            path=str(self.backup_path),
            backup_ts=int(time.time() * 1000),
            size_bytes=size_bytes,
            checksum=checksum,
        )
        self._backup_count += 1
        self._last_backup_ts = info.backup_ts
        logger.info(
            "Backed up store",
            extra={
                "backup_path": info.path,
                "size_bytes": info.size_bytes,
                "checksum": info.checksum,
            },
        )
        return info

    def _compute_checksum(self, file_path: Path) -> str:
        """Compute SHA-256 checksum of file."""
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return f"sha256:{sha256.hexdigest()}"

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "backup_count": self._backup_count,
            "failure_count": self._failure_count,
            "last_backup_ts": self._last_backup_ts,
        }
