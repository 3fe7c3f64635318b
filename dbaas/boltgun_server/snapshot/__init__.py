"""
Snapshot module for Boltgun.

This module handles periodic full-store backups to a local file.

Invariants:
    - Backups never block client transactions beyond SQLite's own locking
    - Backup failures are logged, not fatal
    - Only complete, consistent copies replace the backup file
"""

from .backup import BackupInfo, BackupScheduler

__all__ = ["BackupScheduler", "BackupInfo"]
