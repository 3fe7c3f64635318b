"""
Backup verification CLI tool for Boltgun.

Opens a backup file read-only and checks that it is a usable store:
1. SQLite integrity check passes
2. Every bucket can be opened and iterated

Usage:
    boltgun-verify-backup <backup-file> [-v]

Invariants:
    - The backup file is never modified
    - Exit status is 0 only when every check passed
"""

from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from dataclasses import dataclass, field
from pathlib import Path

from ..store import BucketStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    """Result of verifying a backup file.

    Attributes:
        success: Whether every check passed
        buckets: Entry count per bucket name
        error: Error message if failed
    """

    success: bool
    buckets: dict[str, int] = field(default_factory=dict)
    error: str | None = None


class BackupVerifier:
    """Checks that a backup file can be opened as a store.

    Example:
        >>> result = BackupVerifier("/var/backups/boltgun.db").verify()
        >>> result.success
        True
    """

    def __init__(self, backup_path: str | Path) -> None:
        self.backup_path = Path(backup_path)

    def verify(self) -> VerifyResult:
        """Run all checks.

        Returns:
            VerifyResult describing the outcome
        """
        logger.info(f"Verifying backup {self.backup_path}")

        if not self.backup_path.exists():
            return VerifyResult(success=False, error=f"Backup file not found: {self.backup_path}")
        if self.backup_path.stat().st_size == 0:
            return VerifyResult(success=False, error=f"Backup file is empty: {self.backup_path}")

        try:
            self._check_integrity()
            buckets = self._count_entries()
        except (StoreError, sqlite3.Error, ValueError) as e:
            logger.error(f"Backup verification failed: {e}")
            return VerifyResult(success=False, error=str(e))

        logger.info("Backup verification passed", extra={"buckets": len(buckets)})
        return VerifyResult(success=True, buckets=buckets)

    def _check_integrity(self) -> None:
        """Run SQLite's integrity check on the backup file."""
        conn = sqlite3.connect(f"{self.backup_path.resolve().as_uri()}?mode=ro", uri=True)
        try:
            result = conn.execute("PRAGMA integrity_check").fetchone()[0]
            if result != "ok":
                raise ValueError(f"Database integrity check failed: {result}")
        finally:
            conn.close()

    def _count_entries(self) -> dict[str, int]:
        """Open the backup as a store and count entries per bucket."""
        store = BucketStore(self.backup_path, read_only=True)
        store.open()
        try:
            with store.read_transaction() as tx:
                return {
                    name.decode("utf-8", errors="replace"): len(tx.bucket(name))
                    for name in tx.buckets()
                }
        finally:
            store.close()


def main() -> None:
    """CLI entry point for backup verification."""
    parser = argparse.ArgumentParser(description="Verify a Boltgun backup file")
    parser.add_argument("backup_file", help="Path to the backup file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    result = BackupVerifier(args.backup_file).verify()

    if result.success:
        print(f"Backup OK: {args.backup_file}")
        for name, count in result.buckets.items():
            print(f"  {name}: {count} entries")
        sys.exit(0)
    else:
        print(f"Backup verification failed: {result.error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
